"""
Workflow error taxonomy.

Membership and feedback operations raise these instead of aborting, so they
stay callable without a request context. The app factory maps each kind to
its HTTP status and renders ``{"success": false, "error": message}``.
"""


class WorkflowError(Exception):
    """Base class for expected, caller-facing workflow failures."""

    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(WorkflowError):
    """Malformed or out-of-range input."""

    status_code = 400


class Forbidden(WorkflowError):
    """The acting user lacks the role required for the operation."""

    status_code = 403


class NotFound(WorkflowError):
    status_code = 404


class Conflict(WorkflowError):
    """The operation is not valid for the current state (duplicate, lost race, illegal move)."""

    status_code = 409
