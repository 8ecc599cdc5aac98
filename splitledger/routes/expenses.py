"""
EXPENSE ROUTES
==============

POST body, equal split:
    {"title", "payer_id", "split": "equal", "amount", "user_ids", "tax_amount"?}

POST body, exact split (default):
    {"title", "payer_id", "participants": [{"user_id", "share_amount"}],
     "tax_amount"?, "total_amount"?}

Tax is spread evenly on top of the base shares. When total_amount is sent
it must match the shares. Optional "items": [{"name", "price", "quantity"?}]
are stored as receipt lines.
"""

from flask import Blueprint, jsonify

from splitledger.money import to_money
from splitledger.routes import (
    get_int, get_int_list, get_participants, get_payload, require_fields
)
from splitledger.services.expense_service import (
    build_equal_split, build_exact_split, create_expense, delete_expense,
    get_expense, list_expenses, update_expense
)
from splitledger.services.membership_service import get_group

expenses_bp = Blueprint('expenses', __name__, url_prefix='/api/groups/<int:group_id>')


def _split_from_payload(payload):
    tax_amount = payload.get('tax_amount') or None

    if payload.get('split') == 'equal':
        require_fields(payload, 'amount')
        user_ids = get_int_list(payload, 'user_ids')
        return build_equal_split(payload['amount'], user_ids, tax_amount)

    total, shares = build_exact_split(get_participants(payload), tax_amount)

    if payload.get('total_amount') is not None:
        total = to_money(payload['total_amount'])
    return total, shares


# ============== LIST / VIEW ==============
@expenses_bp.route('/expenses')
def expenses(group_id):
    get_group(group_id)
    return jsonify([e.to_dict() for e in list_expenses(group_id)])


@expenses_bp.route('/expenses/<int:expense_id>')
def view_expense(group_id, expense_id):
    return jsonify(get_expense(group_id, expense_id).to_dict())


# ============== ADD EXPENSE ==============
@expenses_bp.route('/expenses', methods=['POST'])
def add_expense(group_id):
    payload = get_payload()
    require_fields(payload, 'title')

    total, shares = _split_from_payload(payload)

    expense = create_expense(
        group_id=group_id,
        payer_id=get_int(payload, 'payer_id'),
        title=payload['title'],
        total_amount=total,
        shares=shares,
        tax_amount=payload.get('tax_amount') or None,
        currency=payload.get('currency'),
        notes=payload.get('notes'),
        items=payload.get('items'),
    )
    return jsonify(expense.to_dict()), 201


# ============== EDIT EXPENSE ==============
@expenses_bp.route('/expenses/<int:expense_id>', methods=['PUT'])
def edit_expense(group_id, expense_id):
    payload = get_payload()

    total, shares = None, None
    if payload.get('participants') or payload.get('split') == 'equal':
        total, shares = _split_from_payload(payload)
    elif payload.get('total_amount') is not None:
        total = payload['total_amount']

    expense = update_expense(
        group_id,
        expense_id,
        title=payload.get('title'),
        total_amount=total,
        payer_id=get_int(payload, 'payer_id', required=False),
        shares=shares,
        tax_amount=payload.get('tax_amount'),
        currency=payload.get('currency'),
        notes=payload.get('notes'),
        items=payload.get('items'),
    )
    return jsonify(expense.to_dict())


# ============== DELETE EXPENSE ==============
@expenses_bp.route('/expenses/<int:expense_id>', methods=['DELETE'])
def remove_expense(group_id, expense_id):
    delete_expense(group_id, expense_id)
    return jsonify({'success': True})
