"""
SETTLEMENT SERVICE - WHO PAYS WHOM
==================================

CRITICAL BUSINESS RULES:
1. calculate_settlements() is pure: balances in, transfers out, no storage
2. Largest creditor is matched with largest debtor; ties keep input order
3. A side is exhausted once less than one EPSILON is left; a whole cent stays
   with its owner until it is matched
4. Leftover credit and leftover debt must cancel within EPSILON, otherwise
   the ledger is broken -> raise
5. Executing settlements always re-runs the ledger afterwards
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from splitledger.errors import InvariantViolation, LedgerError, NotFoundError, StorageError
from splitledger.extensions import db
from splitledger.models import Group, Membership, Payment
from splitledger.money import (
    EPSILON, ZERO, format_amount, is_settled, money_sum, to_money
)
from splitledger.services.ledger_service import (
    compute_group_balances, lock_group, recalculate_all_group_balances
)

logger = logging.getLogger(__name__)

SETTLEMENT_NOTE = 'Settlement transfer'


@dataclass(frozen=True)
class UserBalance:
    user_id: int
    name: str
    balance: Decimal  # positive = is owed money, negative = owes money


@dataclass(frozen=True)
class Settlement:
    from_user_id: int
    from_user_name: str
    to_user_id: int
    to_user_name: str
    amount: Decimal


@dataclass
class _Position:
    user_id: int
    name: str
    remaining: Decimal


# ============================================================
# GREEDY MATCHING
# ============================================================

def calculate_settlements(balances):
    """
    Turn net balances into transfers that bring everyone to zero.

    Greedy: repeatedly pay min(largest debt, largest credit) from the
    current debtor to the current creditor. Emits at most
    (creditors + debtors - 1) transfers.

    Args:
        balances: list of UserBalance

    Returns:
        list of Settlement, in the order they were matched
    """
    creditors = sorted(
        (_Position(b.user_id, b.name, b.balance)
         for b in balances if b.balance >= EPSILON),
        key=lambda p: p.remaining,
        reverse=True,
    )
    debtors = sorted(
        (_Position(b.user_id, b.name, -b.balance)
         for b in balances if b.balance <= -EPSILON),
        key=lambda p: p.remaining,
        reverse=True,
    )

    settlements = []
    creditor_idx = 0
    debtor_idx = 0

    while creditor_idx < len(creditors) and debtor_idx < len(debtors):
        creditor = creditors[creditor_idx]
        debtor = debtors[debtor_idx]

        transfer = min(creditor.remaining, debtor.remaining)

        settlements.append(Settlement(
            from_user_id=debtor.user_id,
            from_user_name=debtor.name,
            to_user_id=creditor.user_id,
            to_user_name=creditor.name,
            amount=transfer,
        ))

        creditor.remaining -= transfer
        debtor.remaining -= transfer

        if creditor.remaining < EPSILON:
            creditor_idx += 1
        if debtor.remaining < EPSILON:
            debtor_idx += 1

    # Residues of passed members count too, they are below a cent each
    unmatched = money_sum(c.remaining for c in creditors) - money_sum(d.remaining for d in debtors)
    if not is_settled(unmatched):
        leftovers = [
            p for p in creditors[creditor_idx:] + debtors[debtor_idx:] if p.remaining
        ]
        logger.error("Settlement left %s unmatched: %s", unmatched, leftovers)
        raise InvariantViolation(
            f"Balances do not net to zero (off by {unmatched}); unmatched: " + ", ".join(
                f"{p.name} {p.remaining}" for p in leftovers
            )
        )

    return settlements


def serialize_settlement(settlement):
    """Presentation shape: from/to as {id, name}, amount as a 2dp string."""
    return {
        'from': {'id': settlement.from_user_id, 'name': settlement.from_user_name},
        'to': {'id': settlement.to_user_id, 'name': settlement.to_user_name},
        'amount': format_amount(settlement.amount),
    }


# ============================================================
# GROUP LEVEL
# ============================================================

def group_user_balances(group_id, session=None):
    """Current balance of every member, in join order."""
    session = session or db.session

    balances = compute_group_balances(group_id, session)
    memberships = session.query(Membership).filter_by(group_id=group_id) \
        .order_by(Membership.joined_at, Membership.id).all()

    return [
        UserBalance(
            user_id=m.user_id,
            name=m.user.display_name,
            balance=balances.get(m.user_id, ZERO),
        )
        for m in memberships
    ]


def suggest_settlements(group_id):
    """Suggested transfers for the group, nothing is written."""
    if not db.session.get(Group, group_id):
        raise NotFoundError(f"Group {group_id} not found")

    return calculate_settlements(group_user_balances(group_id))


def settle_all(group_id):
    """
    Record every suggested transfer as a payment.

    ATOMIC OPERATION:
    1. Lock group and compute balances
    2. Plan transfers
    3. Create one Payment per transfer
    4. Recalculate every member from the ledger
    5. Verify every member is now settled

    Returns: list of Payment
    """
    try:
        lock_group(db.session, group_id)

        settlements = calculate_settlements(group_user_balances(group_id))

        payments = []
        for settlement in settlements:
            payment = Payment(
                group_id=group_id,
                from_id=settlement.from_user_id,
                to_id=settlement.to_user_id,
                amount=to_money(settlement.amount),
                note=SETTLEMENT_NOTE,
            )
            db.session.add(payment)
            payments.append(payment)
        db.session.flush()

        new_balances = recalculate_all_group_balances(db.session, group_id)

        unsettled = {uid: bal for uid, bal in new_balances.items() if not is_settled(bal)}
        if unsettled:
            raise InvariantViolation(
                f"Group {group_id} still has open balances after settling: {unsettled}"
            )

        db.session.commit()

        logger.info("Settled group %s with %d payment(s)", group_id, len(payments))
        return payments

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Settling group failed: {str(e)}") from e


def mark_settlement_paid(group_id, from_user_id, to_user_id, amount):
    """Record a single suggested transfer as a payment."""
    from splitledger.services.payment_service import create_payment

    return create_payment(
        group_id=group_id,
        from_id=from_user_id,
        to_id=to_user_id,
        amount=amount,
        note=SETTLEMENT_NOTE,
    )
