from datetime import datetime, timezone
from enum import Enum

from splitledger.extensions import db
from splitledger.money import ZERO, format_amount


def utc_now():
    """Naive UTC timestamp, the form the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MemberRole(Enum):
    ADMIN = 'admin'
    MEMBER = 'member'


# ============================================================
# USER MODEL
# ============================================================
class User(db.Model):
    """
    A person who can belong to groups, pay for expenses and send payments.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100))
    email = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    memberships = db.relationship('Membership', backref='user', lazy='dynamic')

    @property
    def display_name(self):
        return self.name or self.email

    def to_dict(self):
        return {'id': self.id, 'name': self.display_name, 'email': self.email}

    def __repr__(self):
        return f'<User {self.display_name}>'


# ============================================================
# GROUP MODEL
# ============================================================
class Group(db.Model):
    """
    A group of people sharing expenses.
    Owns its memberships, expenses and payments.
    """
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default='IDR')
    created_at = db.Column(db.DateTime, default=utc_now)

    memberships = db.relationship('Membership', backref='group', lazy='dynamic',
                                  cascade='all, delete-orphan')
    expenses = db.relationship('Expense', backref='group', lazy='dynamic',
                               cascade='all, delete-orphan')
    payments = db.relationship('Payment', backref='group', lazy='dynamic',
                               cascade='all, delete-orphan')
    activities = db.relationship('ActivityLog', backref='group', lazy='dynamic',
                                 cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'currency': self.currency,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Group {self.name}>'


# ============================================================
# MEMBERSHIP MODEL
# ============================================================
class Membership(db.Model):
    """
    Join between a user and a group.

    CRITICAL: net_balance is a read cache. It is only ever written by the
    ledger's recalculation functions and can always be re-derived from the
    group's expenses and payments.
    """
    __tablename__ = 'memberships'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=MemberRole.MEMBER.value)
    joined_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    # positive = group owes this member, negative = member owes the group
    net_balance = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    __table_args__ = (
        db.UniqueConstraint('group_id', 'user_id', name='unique_group_member'),
    )

    def to_dict(self):
        return {
            'user': self.user.to_dict(),
            'role': self.role,
            'net_balance': format_amount(self.net_balance),
            'joined_at': self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f'<Membership user={self.user_id} group={self.group_id} balance={self.net_balance}>'


# ============================================================
# EXPENSE MODEL
# ============================================================
class Expense(db.Model):
    """
    Something one member paid for on behalf of several.

    Invariant: sum(shares.share_amount) == total_amount, checked by the
    expense service before anything is written.
    """
    __tablename__ = 'expenses'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    payer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)

    # total_amount includes tax_amount
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(10), nullable=False, default='IDR')

    notes = db.Column(db.String(500))
    spent_at = db.Column(db.DateTime, default=utc_now)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    payer = db.relationship('User', foreign_keys=[payer_id])
    shares = db.relationship('ExpenseShare', backref='expense', lazy='selectin',
                             cascade='all, delete-orphan',
                             order_by='ExpenseShare.id')
    items = db.relationship('ExpenseItem', backref='expense', lazy='selectin',
                            cascade='all, delete-orphan',
                            order_by='ExpenseItem.id')

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'title': self.title,
            'payer': self.payer.to_dict(),
            'total_amount': format_amount(self.total_amount),
            'tax_amount': format_amount(self.tax_amount) if self.tax_amount is not None else None,
            'currency': self.currency,
            'notes': self.notes,
            'spent_at': self.spent_at.isoformat() if self.spent_at else None,
            'shares': [share.to_dict() for share in self.shares],
            'items': [item.to_dict() for item in self.items],
        }

    def __repr__(self):
        return f'<Expense {self.title} {self.total_amount} paid by user={self.payer_id}>'


# ============================================================
# EXPENSE SHARE MODEL
# ============================================================
class ExpenseShare(db.Model):
    """One participant's portion of an expense."""
    __tablename__ = 'expense_shares'

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey('expenses.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    share_amount = db.Column(db.Numeric(12, 2), nullable=False)

    # Set when a payment was recorded against this exact share
    paid_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('expense_id', 'user_id', name='unique_expense_share'),
    )

    def to_dict(self):
        return {
            'user': self.user.to_dict(),
            'share_amount': format_amount(self.share_amount),
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
        }

    def __repr__(self):
        return f'<ExpenseShare user={self.user_id} amount={self.share_amount}>'


# ============================================================
# EXPENSE ITEM MODEL
# ============================================================
class ExpenseItem(db.Model):
    """A line on the receipt. Informational, balances never read it."""
    __tablename__ = 'expense_items'

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey('expenses.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self):
        return {'name': self.name, 'price': format_amount(self.price), 'quantity': self.quantity}

    def __repr__(self):
        return f'<ExpenseItem {self.name} x{self.quantity}>'


# ============================================================
# PAYMENT MODEL
# ============================================================
class Payment(db.Model):
    """
    A direct transfer from one member to another, either entered by hand or
    produced by executing a settlement suggestion.
    """
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    from_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    to_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)  # Must be > 0
    note = db.Column(db.String(255))
    paid_at = db.Column(db.DateTime, default=utc_now)
    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    # Optional link to the expense share this payment paid off
    share_id = db.Column(db.Integer, db.ForeignKey('expense_shares.id'), nullable=True)

    sender = db.relationship('User', foreign_keys=[from_id])
    receiver = db.relationship('User', foreign_keys=[to_id])
    share = db.relationship('ExpenseShare', backref='payments')

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'from': self.sender.to_dict(),
            'to': self.receiver.to_dict(),
            'amount': format_amount(self.amount),
            'note': self.note,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'expense_share': {
                'expense_id': self.share.expense_id,
                'user_id': self.share.user_id,
            } if self.share else None,
        }

    def __repr__(self):
        return f'<Payment {self.from_id}->{self.to_id} amount={self.amount}>'


# ============================================================
# ACTIVITY LOG MODEL
# ============================================================
class ActivityLog(db.Model):
    """
    Audit trail of group events, e.g. a member being removed.
    Written in the same transaction as the change it describes.
    """
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False, index=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utc_now)

    actor = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'actor': self.actor.to_dict() if self.actor else None,
            'payload': self.payload,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<ActivityLog {self.type} group={self.group_id}>'
