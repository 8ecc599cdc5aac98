"""
ROUTES
======

JSON endpoints. Routes parse the request, call a service and serialize the
result; every ledger rule lives in the services.
"""

from flask import jsonify, request

from splitledger.errors import (
    ConflictError, InvariantViolation, LedgerError, NotFoundError,
    StorageError, ValidationError
)

ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvariantViolation, 422),
    (ValidationError, 400),
    (StorageError, 503),
)


def get_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_fields(payload, *fields):
    missing = [f for f in fields if payload.get(f) in (None, '')]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")


def register_error_handlers(app):
    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        for error_class, status in ERROR_STATUS:
            if isinstance(error, error_class):
                return jsonify({'error': str(error)}), status
        return jsonify({'error': str(error)}), 500


def get_int(payload, field, required=True):
    value = payload.get(field)
    if value is None:
        if required:
            raise ValidationError(f"Missing fields: {field}")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def get_int_list(payload, field):
    values = payload.get(field)
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{field} must be a non-empty list")
    return [get_int({field: value}, field) for value in values]


def get_participants(payload, field='participants'):
    """[{'user_id', 'share_amount'}, ...] -> [(user_id, share_amount), ...]"""
    participants = payload.get(field)
    if not isinstance(participants, list) or not participants:
        raise ValidationError(f"{field} must be a non-empty list")

    parsed = []
    for participant in participants:
        if not isinstance(participant, dict):
            raise ValidationError(f"Every entry in {field} must be an object")
        require_fields(participant, 'user_id', 'share_amount')
        parsed.append((get_int(participant, 'user_id'), participant['share_amount']))
    return parsed
