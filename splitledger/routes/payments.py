"""
PAYMENT ROUTES
==============

POST body: {"from_id", "to_id", "amount", "note"?}, plus "expense_id" and
"share_user_id" when the payment pays off one expense share.
"""

from flask import Blueprint, jsonify

from splitledger.routes import get_int, get_payload, require_fields
from splitledger.services.membership_service import get_group
from splitledger.services.payment_service import (
    create_payment, delete_payment, list_payments, update_payment
)

payments_bp = Blueprint('payments', __name__, url_prefix='/api/groups/<int:group_id>')


@payments_bp.route('/payments')
def payments(group_id):
    get_group(group_id)
    return jsonify([p.to_dict() for p in list_payments(group_id)])


@payments_bp.route('/payments', methods=['POST'])
def add_payment(group_id):
    payload = get_payload()
    require_fields(payload, 'amount')

    payment = create_payment(
        group_id=group_id,
        from_id=get_int(payload, 'from_id'),
        to_id=get_int(payload, 'to_id'),
        amount=payload['amount'],
        note=payload.get('note'),
        expense_id=get_int(payload, 'expense_id', required=False),
        share_user_id=get_int(payload, 'share_user_id', required=False),
    )
    return jsonify(payment.to_dict()), 201


@payments_bp.route('/payments/<int:payment_id>', methods=['PUT'])
def edit_payment(group_id, payment_id):
    payload = get_payload()

    payment = update_payment(
        group_id,
        payment_id,
        from_id=get_int(payload, 'from_id', required=False),
        to_id=get_int(payload, 'to_id', required=False),
        amount=payload.get('amount'),
        note=payload.get('note'),
    )
    return jsonify(payment.to_dict())


@payments_bp.route('/payments/<int:payment_id>', methods=['DELETE'])
def remove_payment(group_id, payment_id):
    delete_payment(group_id, payment_id)
    return jsonify({'success': True})
