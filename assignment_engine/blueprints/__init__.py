"""
Compliance Assignment Engine
Blueprint registry helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from assignment_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from assignment_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_service_error_handlers(bp):
    """Map service-layer exceptions to HTTP responses for one blueprint.

    NotFoundError → 404, ValidationError → 422, ConflictError → 409,
    anything else → 500 (logged with traceback).
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.BUSINESS_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT, str(error), details=error.details)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "code": E.INTERNAL}), 500

    return bp


def positive_int(value, field, errors):
    """Validate an optional positive integer field; records a message in ``errors``."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors[field] = "must be a positive integer"
        return None
    return value
