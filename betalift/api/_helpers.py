"""Small helper utilities for API modules.

Keep lightweight helpers here so route modules can share request parsing
without pulling in workflow code.
"""
from flask import jsonify, request

from betalift.errors import ValidationError


def get_json_body() -> dict:
    """Return the JSON object body, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args() -> tuple:
    """Read ``page`` and ``limit`` (or ``per_page``) query parameters."""
    return (
        request.args.get("page", 1),
        request.args.get("limit") or request.args.get("per_page"),
    )


def success(data=None, status: int = 200, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status
