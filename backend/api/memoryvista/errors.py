from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error the workflow layer surfaces to callers.

    `kind` is stable and safe for the UI to switch on; `status_code` is what
    the HTTP layer answers with.
    """

    kind = "workflow_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    default_message = "Workflow error"

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(WorkflowError):
    """Malformed input, e.g. an empty change-request reason."""

    kind = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class InvalidTransition(WorkflowError):
    kind = "invalid_transition"
    status_code = 409
    default_message = "This status change is not available"


class PermissionDenied(WorkflowError):
    # Never say which role was missing or who holds what.
    kind = "permission_denied"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class ConcurrentModification(WorkflowError):
    kind = "concurrent_modification"
    status_code = 409
    retryable = True
    default_message = "Someone else changed this content. Reload and try again."


class StoreUnavailable(WorkflowError):
    kind = "store_unavailable"
    status_code = 503
    default_message = "The service is temporarily unavailable. Try again later."


class ContentNotFound(WorkflowError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class Unauthenticated(WorkflowError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "You must be signed in to perform this action"
