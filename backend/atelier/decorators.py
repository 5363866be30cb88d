# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .validation import ValidationError, coerce_int


def with_actor(f):
    """
    Attribute the request to a staff member.

    Sets g.actor_id from the optional `X-Actor-Id` header (None when absent).
    Authentication happens upstream; the id is only recorded in history rows.

    Returns 400 if the header is present but not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-Actor-Id")
        if raw is None or not raw.strip():
            g.actor_id = None
        else:
            try:
                g.actor_id = coerce_int(raw, "X-Actor-Id", minimum=1)
            except ValidationError as e:
                return jsonify(e.to_dict()), e.http_status

        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Request JSON as a dict; raises ValidationError for anything else."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
