"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from assignment_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise ValidationError("Cannot accept a Completed assignment", details={"status": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "WorkItem", "Assignment").
        resource_id: The key that was looked up. Included in logs and the message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Typical cases are an invalid assignment transition or a work item that is
    already terminal. Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the request collides with work already in progress.

    The optimizer endpoint raises it while another batch holds the
    ``assignment-batch`` lock. Maps to HTTP 409.

    Args:
        message: Human-readable explanation of the conflict.
        details: Optional structured context (e.g. the lock name).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
