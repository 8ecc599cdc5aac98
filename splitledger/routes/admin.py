"""
ADMIN ROUTES
============

Balance audit:
- Drift report (cached net_balance vs ledger), read only
- Repair, which rewrites the cache and nothing else
"""

from flask import Blueprint, jsonify, request

from splitledger.extensions import db
from splitledger.models import Group
from splitledger.money import format_amount
from splitledger.routes import get_int, get_payload
from splitledger.services.ledger_service import find_balance_drift, repair_all_balances
from splitledger.services.membership_service import get_group

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _format_amounts(row):
    return {
        key: format_amount(value) if key not in ('user_id', 'name') else value
        for key, value in row.items()
    }


# ============== DRIFT REPORT ==============
@admin_bp.route('/balances/drift')
def balance_drift():
    group_id = request.args.get('group_id', type=int)
    groups = [get_group(group_id)] if group_id else \
        db.session.query(Group).order_by(Group.id).all()

    results = []
    for group in groups:
        discrepancies = find_balance_drift(group.id)
        if discrepancies:
            results.append({
                'group_id': group.id,
                'group_name': group.name,
                'discrepancies': [_format_amounts(d) for d in discrepancies],
            })

    total = sum(len(r['discrepancies']) for r in results)
    return jsonify({
        'total_discrepancies': total,
        'message': f"Found {total} balance discrepancies. Use POST /api/admin/balances/repair to fix."
        if total else "All balances are correct!",
        'results': results,
    })


# ============== REPAIR ==============
@admin_bp.route('/balances/repair', methods=['POST'])
def repair_balances():
    payload = get_payload()
    results = repair_all_balances(get_int(payload, 'group_id', required=False))

    total = sum(r['members_updated'] for r in results)
    return jsonify({
        'success': True,
        'message': f"Repaired {total} balance(s) across {len(results)} group(s)",
        'results': [
            dict(r, changes=[_format_amounts(c) for c in r['changes']])
            for r in results
        ],
    })
