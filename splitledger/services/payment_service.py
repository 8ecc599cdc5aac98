"""
PAYMENT SERVICE
===============

Handles:
- Recording direct transfers between members
- Editing / deleting them
- Debouncing double submissions
- Paying off one specific expense share

CRITICAL BUSINESS RULES:
1. Amount > 0, sender != receiver, both must be group members
2. The same (group, from, to, amount) inside the debounce window is
   rejected as a double submission (best effort, not an idempotency key)
3. Sender and receiver are recalculated from the ledger in the same
   transaction; balances are never patched by +/- amount
4. A payment may name the expense share it pays off. A share can only be
   paid once; its paid_at is stamped in the same transaction
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from splitledger.errors import (
    ConflictError, DuplicatePaymentError, LedgerError, NotFoundError, StorageError,
    ValidationError
)
from splitledger.extensions import db
from splitledger.models import Expense, ExpenseShare, Membership, Payment, utc_now
from splitledger.money import ZERO, to_money
from splitledger.services.ledger_service import lock_group, recalculate_users_balances

logger = logging.getLogger(__name__)


# ============================================================
# HELPERS
# ============================================================

def _check_amount(amount):
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than 0")
    return amount


def _check_parties(group_id, from_id, to_id):
    if from_id == to_id:
        raise ValidationError("A payment needs two different members")

    for user_id in (from_id, to_id):
        membership = Membership.query.filter_by(group_id=group_id, user_id=user_id).first()
        if not membership:
            raise NotFoundError(f"User {user_id} is not a member of group {group_id}")


def find_recent_duplicate(group_id, from_id, to_id, amount, exclude_id=None):
    """Identical payment recorded within PAYMENT_DEBOUNCE_SECONDS, if any."""
    window = current_app.config.get('PAYMENT_DEBOUNCE_SECONDS', 10)
    if not window:
        return None

    query = Payment.query.filter(
        Payment.group_id == group_id,
        Payment.from_id == from_id,
        Payment.to_id == to_id,
        Payment.amount == amount,
        Payment.created_at >= utc_now() - timedelta(seconds=window),
    )
    if exclude_id is not None:
        query = query.filter(Payment.id != exclude_id)
    return query.first()


def _unpaid_share(group_id, expense_id, share_user_id, from_id):
    """The expense share a payment pays off; it must exist and be open."""
    if (expense_id is None) != (share_user_id is None):
        raise ValidationError("expense_id and share_user_id go together")

    share = ExpenseShare.query.join(Expense).filter(
        Expense.group_id == group_id,
        ExpenseShare.expense_id == expense_id,
        ExpenseShare.user_id == share_user_id,
    ).first()
    if not share:
        raise NotFoundError(f"User {share_user_id} has no share in expense {expense_id}")
    if share.paid_at is not None:
        raise ConflictError("This share has already been paid")
    if share.user_id != from_id:
        raise ValidationError("Only the owner of a share can pay it off")
    return share


def get_payment(group_id, payment_id):
    payment = Payment.query.filter_by(id=payment_id, group_id=group_id).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def list_payments(group_id):
    return Payment.query.filter_by(group_id=group_id) \
        .order_by(Payment.paid_at.desc(), Payment.id.desc()).all()


# ============================================================
# CREATE PAYMENT (ATOMIC)
# ============================================================

def create_payment(group_id, from_id, to_id, amount, note=None,
                   expense_id=None, share_user_id=None):
    """
    Record `from_id` paying `amount` to `to_id`.

    With expense_id and share_user_id the payment pays off that member's
    share of the expense, which is then marked paid.

    Returns: Payment
    """
    try:
        amount = _check_amount(amount)

        lock_group(db.session, group_id)
        _check_parties(group_id, from_id, to_id)

        share = None
        if expense_id is not None or share_user_id is not None:
            share = _unpaid_share(group_id, expense_id, share_user_id, from_id)

        if find_recent_duplicate(group_id, from_id, to_id, amount):
            logger.warning("Duplicate payment %s->%s %s in group %s rejected",
                           from_id, to_id, amount, group_id)
            raise DuplicatePaymentError(
                "This payment was just recorded. Please wait a few seconds."
            )

        payment = Payment(
            group_id=group_id,
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            note=note,
        )
        db.session.add(payment)
        if share is not None:
            payment.share = share
            share.paid_at = utc_now()
        db.session.flush()

        recalculate_users_balances(db.session, {from_id, to_id}, group_id)

        db.session.commit()

        logger.info("Recorded payment %s: %s -> %s amount=%s in group %s",
                    payment.id, from_id, to_id, amount, group_id)
        return payment

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to create payment: {str(e)}") from e


# ============================================================
# UPDATE PAYMENT (ATOMIC)
# ============================================================

def update_payment(group_id, payment_id, from_id=None, to_id=None, amount=None, note=None):
    """Edit a payment; old and new sender/receiver are recalculated."""
    try:
        lock_group(db.session, group_id)
        payment = get_payment(group_id, payment_id)
        affected = {payment.from_id, payment.to_id}

        new_from = from_id if from_id is not None else payment.from_id
        new_to = to_id if to_id is not None else payment.to_id
        new_amount = _check_amount(amount) if amount is not None else payment.amount

        _check_parties(group_id, new_from, new_to)

        payment.from_id = new_from
        payment.to_id = new_to
        payment.amount = new_amount
        if note is not None:
            payment.note = note
        db.session.flush()

        affected |= {new_from, new_to}
        recalculate_users_balances(db.session, affected, group_id)

        db.session.commit()

        logger.info("Updated payment %s in group %s", payment_id, group_id)
        return payment

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to update payment: {str(e)}") from e


# ============================================================
# DELETE PAYMENT (ATOMIC)
# ============================================================

def delete_payment(group_id, payment_id):
    try:
        lock_group(db.session, group_id)
        payment = get_payment(group_id, payment_id)
        affected = {payment.from_id, payment.to_id}

        # The share it paid off is open again
        if payment.share is not None:
            payment.share.paid_at = None

        db.session.delete(payment)
        db.session.flush()

        recalculate_users_balances(db.session, affected, group_id)

        db.session.commit()

        logger.info("Deleted payment %s from group %s", payment_id, group_id)
        return True

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to delete payment: {str(e)}") from e
