"""
SETTLEMENT ROUTES
=================

GET  suggestions (nothing written)
POST settle everything at once
POST mark a single suggestion as paid
"""

from flask import Blueprint, jsonify

from splitledger.routes import get_int, get_payload, require_fields
from splitledger.services.settlement_service import (
    mark_settlement_paid, serialize_settlement, settle_all, suggest_settlements
)

settlements_bp = Blueprint('settlements', __name__, url_prefix='/api/groups/<int:group_id>')


@settlements_bp.route('/settlements')
def suggestions(group_id):
    settlements = suggest_settlements(group_id)
    return jsonify({'settlements': [serialize_settlement(s) for s in settlements]})


@settlements_bp.route('/settlements', methods=['POST'])
def execute_all(group_id):
    payments = settle_all(group_id)
    return jsonify({
        'message': 'Settlements recorded successfully',
        'count': len(payments),
        'payments': [p.to_dict() for p in payments],
    })


@settlements_bp.route('/settlements/mark-paid', methods=['POST'])
def mark_paid(group_id):
    payload = get_payload()
    require_fields(payload, 'amount')

    payment = mark_settlement_paid(
        group_id,
        from_user_id=get_int(payload, 'from_id'),
        to_user_id=get_int(payload, 'to_id'),
        amount=payload['amount'],
    )
    return jsonify(payment.to_dict()), 201
