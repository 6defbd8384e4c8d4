"""Custom exceptions for the workflow engine."""


class WorkflowEngineError(Exception):
    """Base exception for the workflow engine."""

    retryable = False

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class WorkflowConfigError(ValidationError):
    """A workflow definition or node config is invalid.

    Never retried: the same definition fails the same way every time.
    """

    def __init__(self, message: str = "Invalid workflow configuration"):
        super().__init__(message)


class TemplateResolutionError(WorkflowConfigError):
    """A template path could not be parsed or resolved to a usable value."""


class ActionConfigError(WorkflowConfigError):
    """An action was invoked with invalid parameters."""


class TransientActionError(WorkflowEngineError):
    """A downstream dependency failed in a way that may succeed on retry."""

    retryable = True

    def __init__(self, message: str = "Transient action failure"):
        super().__init__(message, 503)
