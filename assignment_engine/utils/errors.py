"""JSON error bodies shared by every blueprint.

All error responses look like::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty. Blueprints return ``api_error(...)`` for
input-shape problems; service exceptions are converted by the handlers in
``assignment_engine.blueprints``.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing field / query param
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # malformed value
    BUSINESS_RULE = "ERR_BUSINESS_RULE"               # e.g. illegal assignment transition
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT = "ERR_CONFLICT"                         # e.g. optimizer batch lock held
    INTERNAL = "ERR_INTERNAL"


STATUS_FOR_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.BUSINESS_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Build a ``(response, status)`` pair for a Flask view.

    The HTTP status comes from ``status`` when given, otherwise from
    ``STATUS_FOR_CODE`` (400 for unknown codes).
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_FOR_CODE.get(code, 400)
