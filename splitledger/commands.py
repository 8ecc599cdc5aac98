"""
Operator commands.

    flask --app splitledger check-balances [--group-id N]
    flask --app splitledger repair-balances [--group-id N]
"""

import click
from flask.cli import with_appcontext

from splitledger.errors import LedgerError
from splitledger.extensions import db
from splitledger.models import Group
from splitledger.money import format_amount
from splitledger.services.ledger_service import find_balance_drift, repair_all_balances


def register_commands(app):
    app.cli.add_command(check_balances)
    app.cli.add_command(repair_balances)


@click.command('check-balances')
@click.option('--group-id', type=int, default=None, help='Only check this group.')
@with_appcontext
def check_balances(group_id):
    """Report cached balances that disagree with the ledger."""
    if group_id is not None:
        group_ids = [group_id]
    else:
        group_ids = [g.id for g in db.session.query(Group).order_by(Group.id).all()]

    total = 0
    for gid in group_ids:
        try:
            discrepancies = find_balance_drift(gid)
        except LedgerError as e:
            raise click.ClickException(str(e))

        for d in discrepancies:
            total += 1
            click.echo(
                f"group={gid} user={d['user_id']} ({d['name']}): "
                f"stored {format_amount(d['stored'])}, "
                f"ledger {format_amount(d['computed'])}, "
                f"diff {format_amount(d['difference'])}"
            )

    if total:
        click.echo(f"Found {total} balance discrepancies. Run repair-balances to fix.")
    else:
        click.echo("All balances are correct!")


@click.command('repair-balances')
@click.option('--group-id', type=int, default=None, help='Only repair this group.')
@with_appcontext
def repair_balances(group_id):
    """Rewrite cached balances from the ledger."""
    try:
        results = repair_all_balances(group_id)
    except LedgerError as e:
        raise click.ClickException(str(e))

    for result in results:
        for change in result['changes']:
            click.echo(
                f"group={result['group_id']} {change['name']}: "
                f"{format_amount(change['old_balance'])} -> {format_amount(change['new_balance'])}"
            )

    total = sum(r['members_updated'] for r in results)
    click.echo(f"Repaired {total} balance(s) across {len(results)} group(s)")
