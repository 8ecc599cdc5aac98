"""
EXPENSE SERVICE
===============

Handles:
- Creating / editing / deleting expenses and their shares
- Building equal or exact splits (with evenly spread tax)

CRITICAL BUSINESS RULES:
1. Shares must add up EXACTLY to the expense total, otherwise reject
2. Payer and every share holder must be members of the group
3. Every mutation recalculates the payer and share holders of BOTH the old
   and the new version of the expense, in the same transaction
"""

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from splitledger.errors import (
    InvariantViolation, LedgerError, NotFoundError, StorageError, ValidationError
)
from splitledger.extensions import db
from splitledger.models import Expense, ExpenseItem, ExpenseShare, Membership
from splitledger.money import (
    REMAINDER_FIRST, ZERO, equal_shares, exact_shares, money_sum, to_money
)
from splitledger.services.ledger_service import (
    affected_users, lock_group, recalculate_users_balances
)

logger = logging.getLogger(__name__)


# ============================================================
# SPLIT BUILDERS
# ============================================================

def _remainder_policy():
    return current_app.config.get('SPLIT_REMAINDER_TO', REMAINDER_FIRST)


def build_equal_split(base_amount, user_ids, tax_amount=None):
    """
    Equal split between `user_ids`, tax spread evenly on top.

    Returns: (total_amount, shares)
    """
    if not user_ids:
        raise ValidationError("Select at least one participant")

    shares = equal_shares(base_amount, user_ids, tax_amount, _remainder_policy())
    return money_sum(amount for _, amount in shares), shares


def build_exact_split(amounts_by_user, tax_amount=None):
    """
    Explicit amounts per user, tax spread evenly on top.

    Returns: (total_amount, shares)
    """
    shares = exact_shares(amounts_by_user, tax_amount, _remainder_policy())
    return money_sum(amount for _, amount in shares), shares


# ============================================================
# VALIDATION HELPERS
# ============================================================

def _normalize_shares(shares):
    """Accept (user_id, amount) pairs or {'user_id', 'share_amount'} dicts."""
    normalized = []
    for share in shares or []:
        if isinstance(share, dict):
            user_id, amount = share.get('user_id'), share.get('share_amount')
        else:
            user_id, amount = share
        if user_id is None:
            raise ValidationError("Every share needs a user_id")
        normalized.append((int(user_id), to_money(amount)))

    if not normalized:
        raise ValidationError("At least one participant is required")

    user_ids = [user_id for user_id, _ in normalized]
    if len(set(user_ids)) != len(user_ids):
        raise ValidationError("A participant can only appear once per expense")

    if any(amount < ZERO for _, amount in normalized):
        raise ValidationError("Share amounts cannot be negative")

    return normalized


def _normalize_items(items):
    """
    Optional receipt lines: (name, price[, quantity]) tuples or
    {'name', 'price', 'quantity'} dicts. Quantity defaults to 1.
    """
    if items is not None and not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")

    normalized = []
    for item in items or []:
        if isinstance(item, dict):
            name, price, quantity = item.get('name'), item.get('price'), item.get('quantity', 1)
        elif isinstance(item, (list, tuple)) and len(item) in (2, 3):
            name, price, quantity = (tuple(item) + (1,))[:3]
        else:
            raise ValidationError("Every item needs a name and a price")

        if not name or not str(name).strip():
            raise ValidationError("Every item needs a name")
        price = to_money(price)
        if price < ZERO:
            raise ValidationError("Item price cannot be negative")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Item quantity must be a positive whole number")

        normalized.append(ExpenseItem(name=str(name).strip(), price=price, quantity=quantity))
    return normalized


def _check_shares_match_total(shares, total_amount):
    share_total = money_sum(amount for _, amount in shares)
    if share_total != total_amount:
        logger.warning("Rejected shares summing to %s for total %s", share_total, total_amount)
        raise InvariantViolation(
            f"Expense shares ({share_total}) do not equal total amount ({total_amount})"
        )


def _check_total(total_amount):
    total_amount = to_money(total_amount)
    if total_amount <= ZERO:
        raise ValidationError("Expense total must be greater than 0")
    return total_amount


def _require_members(group_id, user_ids):
    user_ids = set(user_ids)
    found = {
        m.user_id for m in Membership.query.filter(
            Membership.group_id == group_id,
            Membership.user_id.in_(user_ids)
        ).all()
    }
    missing = sorted(user_ids - found)
    if missing:
        raise NotFoundError(f"Users {missing} are not members of group {group_id}")


def _snapshot(expense):
    return expense.payer_id, [share.user_id for share in expense.shares]


# ============================================================
# READS
# ============================================================

def get_expense(group_id, expense_id):
    expense = Expense.query.filter_by(id=expense_id, group_id=group_id).first()
    if not expense:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def list_expenses(group_id):
    return Expense.query.filter_by(group_id=group_id) \
        .order_by(Expense.spent_at.desc(), Expense.id.desc()).all()


# ============================================================
# CREATE EXPENSE (ATOMIC)
# ============================================================

def create_expense(group_id, payer_id, title, total_amount, shares,
                   tax_amount=None, currency=None, notes=None, spent_at=None, items=None):
    """
    Record an expense paid by `payer_id` and split into `shares`.

    `items` are optional receipt lines stored alongside; they do not have to
    add up to the total.

    ATOMIC: expense, shares and the recalculated balances of the payer and
    every share holder are committed together.

    Returns: Expense
    """
    try:
        if not title or not title.strip():
            raise ValidationError("Expense title is required")

        total_amount = _check_total(total_amount)
        shares = _normalize_shares(shares)
        _check_shares_match_total(shares, total_amount)
        items = _normalize_items(items)

        group = lock_group(db.session, group_id)
        _require_members(group_id, [payer_id] + [user_id for user_id, _ in shares])

        expense = Expense(
            group_id=group_id,
            payer_id=payer_id,
            title=title.strip(),
            total_amount=total_amount,
            tax_amount=to_money(tax_amount) if tax_amount is not None else None,
            currency=currency or group.currency,
            notes=notes,
        )
        if spent_at is not None:
            expense.spent_at = spent_at
        expense.shares = [
            ExpenseShare(user_id=user_id, share_amount=amount)
            for user_id, amount in shares
        ]
        expense.items = items
        db.session.add(expense)
        db.session.flush()

        recalculate_users_balances(db.session, affected_users(after=_snapshot(expense)), group_id)

        db.session.commit()

        logger.info("Created expense %s (%s) in group %s, paid by %s",
                    expense.id, total_amount, group_id, payer_id)
        return expense

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to create expense: {str(e)}") from e


# ============================================================
# UPDATE EXPENSE (ATOMIC)
# ============================================================

def update_expense(group_id, expense_id, title=None, total_amount=None, payer_id=None,
                   shares=None, tax_amount=None, currency=None, notes=None, spent_at=None,
                   items=None):
    """
    Edit an expense. Only the given fields change.

    When `shares` is given they replace all existing shares. Whether or not
    shares change, the resulting shares must add up to the resulting total.
    `tax_amount` is only accepted together with `shares`, since the tax is
    already spread into them; replacing shares without it clears the stored
    tax. `items`, when given, replace all receipt lines.

    Recalculates: old payer, old share holders, new payer, new share holders.
    """
    try:
        lock_group(db.session, group_id)
        expense = get_expense(group_id, expense_id)
        before = _snapshot(expense)

        new_total = _check_total(total_amount) if total_amount is not None else expense.total_amount

        if tax_amount is not None and shares is None:
            raise ValidationError("Tax can only be changed together with the shares")

        if shares is not None:
            new_shares = _normalize_shares(shares)
        else:
            new_shares = [(share.user_id, share.share_amount) for share in expense.shares]
        _check_shares_match_total(new_shares, new_total)

        new_payer_id = payer_id if payer_id is not None else expense.payer_id
        _require_members(group_id, [new_payer_id] + [user_id for user_id, _ in new_shares])
        new_items = _normalize_items(items) if items is not None else None

        if title is not None:
            if not title.strip():
                raise ValidationError("Expense title is required")
            expense.title = title.strip()
        if shares is not None:
            expense.tax_amount = to_money(tax_amount) if tax_amount is not None else None
        if currency is not None:
            expense.currency = currency
        if notes is not None:
            expense.notes = notes
        if spent_at is not None:
            expense.spent_at = spent_at
        if new_items is not None:
            expense.items = new_items

        expense.total_amount = new_total
        expense.payer_id = new_payer_id

        if shares is not None:
            # Old rows must be gone before re-inserting the same (expense, user) pairs
            expense.shares.clear()
            db.session.flush()
            expense.shares.extend(
                ExpenseShare(user_id=user_id, share_amount=amount)
                for user_id, amount in new_shares
            )
        db.session.flush()

        after = _snapshot(expense)
        recalculate_users_balances(db.session, affected_users(before, after), group_id)

        db.session.commit()

        logger.info("Updated expense %s in group %s, recalculated users %s",
                    expense_id, group_id, sorted(affected_users(before, after)))
        return expense

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to update expense: {str(e)}") from e


# ============================================================
# DELETE EXPENSE (ATOMIC)
# ============================================================

def delete_expense(group_id, expense_id):
    """Delete an expense and recalculate everyone it touched."""
    try:
        lock_group(db.session, group_id)
        expense = get_expense(group_id, expense_id)
        before = _snapshot(expense)

        db.session.delete(expense)
        db.session.flush()

        recalculate_users_balances(db.session, affected_users(before=before), group_id)

        db.session.commit()

        logger.info("Deleted expense %s from group %s", expense_id, group_id)
        return True

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to delete expense: {str(e)}") from e
