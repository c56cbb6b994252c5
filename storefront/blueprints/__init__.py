"""JSON API blueprints."""
from flask import jsonify, request
from storefront.exceptions import ValidationError


def ok(data=None, status_code=200):
    """Success envelope shared by every endpoint."""
    return jsonify({'status': 'success', 'data': data}), status_code


def json_body():
    """Request JSON object ({} when the body is empty)."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload
