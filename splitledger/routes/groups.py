"""
GROUP ROUTES
============

Users, groups, memberships and the group activity log.
"""

from flask import Blueprint, jsonify

from splitledger.money import ZERO, format_amount
from splitledger.routes import get_int, get_payload, require_fields
from splitledger.services.ledger_service import compute_group_balances
from splitledger.services.membership_service import (
    add_member, create_group, create_user, delete_group, get_group,
    list_activity, list_members, remove_member
)

groups_bp = Blueprint('groups', __name__, url_prefix='/api')


# ============== USERS ==============
@groups_bp.route('/users', methods=['POST'])
def register_user():
    payload = get_payload()
    user = create_user(email=payload.get('email'), name=payload.get('name'))
    return jsonify(user.to_dict()), 201


# ============== GROUPS ==============
@groups_bp.route('/groups', methods=['POST'])
def new_group():
    payload = get_payload()
    require_fields(payload, 'name')
    group = create_group(
        name=payload['name'],
        created_by=get_int(payload, 'created_by'),
        currency=payload.get('currency'),
    )
    return jsonify(group.to_dict()), 201


@groups_bp.route('/groups/<int:group_id>')
def view_group(group_id):
    group = get_group(group_id)
    balances = compute_group_balances(group_id)

    data = group.to_dict()
    data['members'] = [m.to_dict() for m in list_members(group_id)]
    data['balances'] = {
        str(m['user']['id']): format_amount(balances.get(m['user']['id'], ZERO))
        for m in data['members']
    }
    return jsonify(data)


@groups_bp.route('/groups/<int:group_id>', methods=['DELETE'])
def remove_group(group_id):
    delete_group(group_id)
    return jsonify({'success': True})


# ============== MEMBERS ==============
@groups_bp.route('/groups/<int:group_id>/members')
def members(group_id):
    return jsonify([m.to_dict() for m in list_members(group_id)])


@groups_bp.route('/groups/<int:group_id>/members', methods=['POST'])
def invite_member(group_id):
    payload = get_payload()
    membership = add_member(group_id, get_int(payload, 'user_id'))
    return jsonify(membership.to_dict()), 201


@groups_bp.route('/groups/<int:group_id>/members/<int:user_id>', methods=['DELETE'])
def kick_member(group_id, user_id):
    payload = get_payload()
    remove_member(group_id, user_id, removed_by=get_int(payload, 'removed_by', required=False))
    return jsonify({'success': True})


# ============== ACTIVITY ==============
@groups_bp.route('/groups/<int:group_id>/activity')
def activity(group_id):
    return jsonify([entry.to_dict() for entry in list_activity(group_id)])
