"""
MEMBERSHIP SERVICE
==================

Handles:
- Registering users
- Creating / deleting groups
- Adding / removing members (with balance checks)
- The group activity log (member removals)

STRICT RULES:
- A member can only be removed once their balance is settled
- A group can only be deleted once every member is settled
- Balance checks use a fresh ledger computation, not the cached net_balance
- A removal is logged to ActivityLog in the same transaction
"""

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from splitledger.errors import (
    ConflictError, LedgerError, NotFoundError, StorageError, ValidationError
)
from splitledger.extensions import db
from splitledger.models import ActivityLog, Group, Membership, MemberRole, User
from splitledger.money import ZERO, format_amount, is_settled
from splitledger.services.ledger_service import compute_group_balances, lock_group

logger = logging.getLogger(__name__)

MEMBER_REMOVED = 'member.removed'


# ============================================================
# LOOKUPS
# ============================================================

def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_group(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError(f"Group {group_id} not found")
    return group


def get_membership(group_id, user_id):
    membership = Membership.query.filter_by(group_id=group_id, user_id=user_id).first()
    if not membership:
        raise NotFoundError(f"User {user_id} is not a member of group {group_id}")
    return membership


def list_members(group_id):
    get_group(group_id)
    return Membership.query.filter_by(group_id=group_id) \
        .order_by(Membership.joined_at, Membership.id).all()


def list_activity(group_id):
    """Newest first."""
    get_group(group_id)
    return ActivityLog.query.filter_by(group_id=group_id) \
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).all()


# ============================================================
# CREATE USER / GROUP
# ============================================================

def create_user(email, name=None):
    try:
        email = (email or '').strip().lower()
        if not email:
            raise ValidationError("Email is required")

        if User.query.filter_by(email=email).first():
            raise ConflictError("Email is already registered")

        user = User(email=email, name=(name or '').strip() or None)
        db.session.add(user)
        db.session.commit()

        return user

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to create user: {str(e)}") from e


def create_group(name, created_by, currency=None):
    """Create a group; the creator becomes its admin."""
    try:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Group name is required")

        get_user(created_by)

        group = Group(
            name=name,
            currency=currency or current_app.config.get('DEFAULT_CURRENCY', 'IDR'),
        )
        db.session.add(group)
        db.session.flush()

        db.session.add(Membership(
            group_id=group.id,
            user_id=created_by,
            role=MemberRole.ADMIN.value,
        ))
        db.session.commit()

        logger.info("Created group %s (%s) by user %s", group.id, name, created_by)
        return group

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to create group: {str(e)}") from e


# ============================================================
# ADD MEMBER
# ============================================================

def add_member(group_id, user_id, role=MemberRole.MEMBER.value):
    try:
        lock_group(db.session, group_id)
        get_user(user_id)

        existing = Membership.query.filter_by(group_id=group_id, user_id=user_id).first()
        if existing:
            raise ConflictError("User is already a member")

        membership = Membership(group_id=group_id, user_id=user_id, role=role)
        db.session.add(membership)
        db.session.commit()

        logger.info("Added user %s to group %s", user_id, group_id)
        return membership

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to add member: {str(e)}") from e


# ============================================================
# REMOVE MEMBER
# ============================================================

def remove_member(group_id, user_id, removed_by=None):
    """
    Remove a member whose balance is settled.

    Refused while they owe or are owed anything.
    """
    try:
        lock_group(db.session, group_id)

        if removed_by is not None and removed_by == user_id:
            raise ConflictError("Cannot remove yourself from the group")
        if removed_by is not None:
            get_user(removed_by)

        membership = get_membership(group_id, user_id)

        balance = compute_group_balances(group_id, db.session).get(user_id, ZERO)
        if not is_settled(balance):
            if balance > ZERO:
                reason = f"They are owed {format_amount(balance)}."
            else:
                reason = f"They owe {format_amount(-balance)}."
            logger.warning("Refused to remove user %s from group %s: balance %s",
                           user_id, group_id, balance)
            raise ConflictError(f"Cannot remove member. {reason}")

        db.session.delete(membership)
        db.session.add(ActivityLog(
            group_id=group_id,
            actor_id=removed_by,
            type=MEMBER_REMOVED,
            payload={'target_user_id': user_id},
        ))
        db.session.commit()

        logger.info("Removed user %s from group %s", user_id, group_id)
        return True

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to remove member: {str(e)}") from e


# ============================================================
# DELETE GROUP
# ============================================================

def delete_group(group_id):
    """Delete a group once nobody in it owes or is owed anything."""
    try:
        group = lock_group(db.session, group_id)

        open_balances = {
            user_id: balance
            for user_id, balance in compute_group_balances(group_id, db.session).items()
            if not is_settled(balance)
        }
        if open_balances:
            logger.warning("Refused to delete group %s with open balances %s",
                           group_id, open_balances)
            raise ConflictError(
                f"Cannot delete group: {len(open_balances)} member(s) are not settled up"
            )

        db.session.delete(group)
        db.session.commit()

        logger.info("Deleted group %s", group_id)
        return True

    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Failed to delete group: {str(e)}") from e
