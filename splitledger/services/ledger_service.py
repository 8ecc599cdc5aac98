"""
LEDGER SERVICE - BALANCE DERIVATION
===================================

CRITICAL BUSINESS RULES:
1. A member's balance is derived ONLY from the group's expenses and payments
2. fold_balances() is the ONE place the balance arithmetic lives:
       net = expenses_paid - shares_owed + payments_sent - payments_received
3. Membership.net_balance is a cache; recalculation overwrites it from
   scratch, it is never patched with deltas
4. Recalculation runs inside the caller's transaction (flush, never commit)
5. Sum of all balances in a group is zero (within EPSILON)
6. Repair only rewrites the cache, never expenses, shares or payments
"""

import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from splitledger.errors import InvariantViolation, LedgerError, NotFoundError, StorageError
from splitledger.extensions import db
from splitledger.models import Expense, ExpenseShare, Group, Membership, Payment, User
from splitledger.money import ZERO, is_settled, money_sum, to_money

logger = logging.getLogger(__name__)


# ============================================================
# THE FORMULA
# ============================================================

def fold_balances(expenses, payments):
    """
    Fold expenses (with shares) and payments into net balances.

    - payer of an expense is credited with the total
    - every share holder is debited with their share
    - the sender of a payment is credited, the receiver debited

    Returns: dict user_id -> Decimal
    """
    balances = defaultdict(Decimal)

    for expense in expenses:
        balances[expense.payer_id] += expense.total_amount
        for share in expense.shares:
            balances[share.user_id] -= share.share_amount

    for payment in payments:
        balances[payment.from_id] += payment.amount
        balances[payment.to_id] -= payment.amount

    return dict(balances)


def check_conservation(balances, group_id=None):
    """Raise InvariantViolation when the balances do not sum to zero."""
    total = money_sum(balances.values())
    if not is_settled(total):
        logger.error("Group %s balances sum to %s instead of zero", group_id, total)
        raise InvariantViolation(
            f"Balances of group {group_id} sum to {total}, money is not conserved"
        )


# ============================================================
# READ PATHS
# ============================================================

def lock_group(session, group_id):
    """
    Load the group row FOR UPDATE.

    Every mutating service calls this first so that recalculations on the
    same group are serialized by the database.
    """
    group = session.query(Group).filter_by(id=group_id).with_for_update().first()
    if not group:
        raise NotFoundError(f"Group {group_id} not found")
    return group


def compute_group_balances(group_id, session=None):
    """
    Net balance of every user appearing in the group's history.

    No side effects. Users without any expense or payment are absent from
    the result (their balance is zero).
    """
    session = session or db.session

    expenses = session.query(Expense).filter_by(group_id=group_id).all()
    payments = session.query(Payment).filter_by(group_id=group_id).all()

    balances = fold_balances(expenses, payments)
    check_conservation(balances, group_id)

    return balances


def compute_user_balance(session, user_id, group_id):
    """Same formula, restricted to the rows that involve one user."""
    expenses = session.query(Expense).filter(
        Expense.group_id == group_id,
        or_(
            Expense.payer_id == user_id,
            Expense.shares.any(ExpenseShare.user_id == user_id),
        ),
    ).all()

    payments = session.query(Payment).filter(
        Payment.group_id == group_id,
        or_(Payment.from_id == user_id, Payment.to_id == user_id),
    ).all()

    return fold_balances(expenses, payments).get(user_id, ZERO)


# ============================================================
# CACHE WRITES (caller owns the transaction)
# ============================================================

def recalculate_user_balance(session, user_id, group_id):
    """
    Recompute one member's balance and store it in Membership.net_balance.

    Returns: Decimal (the new balance)
    """
    membership = session.query(Membership).filter_by(
        group_id=group_id,
        user_id=user_id
    ).first()

    if not membership:
        raise NotFoundError(f"User {user_id} is not a member of group {group_id}")

    net_balance = to_money(compute_user_balance(session, user_id, group_id))
    membership.net_balance = net_balance
    session.flush()

    logger.debug("Recalculated balance user=%s group=%s balance=%s", user_id, group_id, net_balance)
    return net_balance


def recalculate_users_balances(session, user_ids, group_id):
    """Recompute every user in `user_ids`. Returns dict user_id -> Decimal."""
    return {
        user_id: recalculate_user_balance(session, user_id, group_id)
        for user_id in sorted(set(user_ids))
    }


def recalculate_all_group_balances(session, group_id):
    """Recompute every membership of the group. Returns dict user_id -> Decimal."""
    user_ids = [
        m.user_id for m in session.query(Membership).filter_by(group_id=group_id).all()
    ]
    return recalculate_users_balances(session, user_ids, group_id)


def affected_users(before=None, after=None):
    """
    Users whose balance a change to an expense can move.

    `before` / `after` are (payer_id, share_user_ids) snapshots of the
    expense prior to and following the mutation; either may be None.
    """
    user_ids = set()
    for snapshot in (before, after):
        if snapshot is None:
            continue
        payer_id, share_user_ids = snapshot
        user_ids.add(payer_id)
        user_ids.update(share_user_ids)
    return user_ids


# ============================================================
# DRIFT DETECTION & REPAIR (AUDIT)
# ============================================================

def find_balance_drift(group_id, session=None):
    """
    Compare every cached net_balance with a fresh computation.

    Read only. Returns a list of discrepancies.
    """
    session = session or db.session

    if not session.get(Group, group_id):
        raise NotFoundError(f"Group {group_id} not found")

    computed = compute_group_balances(group_id, session)
    memberships = session.query(Membership).filter_by(group_id=group_id) \
        .order_by(Membership.id).all()

    discrepancies = []
    for membership in memberships:
        stored = membership.net_balance
        correct = to_money(computed.get(membership.user_id, ZERO))
        difference = correct - stored

        if difference != ZERO:
            discrepancies.append({
                'user_id': membership.user_id,
                'name': membership.user.display_name,
                'stored': stored,
                'computed': correct,
                'difference': difference,
            })

    if discrepancies:
        logger.warning("Group %s has %d drifted balance(s)", group_id, len(discrepancies))

    return discrepancies


def repair_group_balances(group_id):
    """
    Rewrite every cached balance of the group from the ledger.

    ATOMIC: all memberships or none.
    Returns: dict describing what changed
    """
    try:
        group = lock_group(db.session, group_id)

        before = {
            m.user_id: m.net_balance
            for m in db.session.query(Membership).filter_by(group_id=group_id).all()
        }

        # A broken ledger must not be papered over by a repair
        compute_group_balances(group_id, db.session)
        after = recalculate_all_group_balances(db.session, group_id)

        changes = []
        for user_id, new_balance in after.items():
            old_balance = before.get(user_id, ZERO)
            if new_balance != old_balance:
                user = db.session.get(User, user_id)
                changes.append({
                    'user_id': user_id,
                    'name': user.display_name,
                    'old_balance': old_balance,
                    'new_balance': new_balance,
                    'difference': new_balance - old_balance,
                })

        db.session.commit()

        if changes:
            logger.warning("Repaired %d balance(s) in group %s", len(changes), group_id)
        else:
            logger.info("Group %s balances already consistent", group_id)

        return {
            'group_id': group.id,
            'group_name': group.name,
            'members_updated': len(changes),
            'changes': changes,
        }

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Balance repair failed: {str(e)}") from e


def repair_all_balances(group_id=None):
    """Repair one group, or every group when group_id is None."""
    if group_id is not None:
        group_ids = [group_id]
    else:
        group_ids = [g.id for g in db.session.query(Group).order_by(Group.id).all()]

    if not group_ids:
        raise NotFoundError("No groups found")

    return [repair_group_balances(gid) for gid in group_ids]
