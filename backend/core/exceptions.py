"""Exception taxonomy for the workflow automation engine."""

from typing import Optional


class EngineError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code used when the error reaches the API
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(EngineError):
    """A workflow or step definition is structurally invalid."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class ResolutionError(EngineError):
    """A template or formula could not be resolved against the variable store."""

    def __init__(self, message: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message, 422)


class AdapterError(EngineError):
    """An external system (integration, notification channel) reported a failure."""

    def __init__(self, message: str = "External call failed"):
        super().__init__(message, 502)


class FatalEngineError(EngineError):
    """Corrupted definition or engine defect. Terminates the run."""

    def __init__(self, message: str = "Internal engine error"):
        super().__init__(message, 500)


class NotFoundError(EngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ConflictError(EngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class RunFinalizedError(ConflictError):
    """A write was attempted on an execution run that is already finalized."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Execution run {run_id} is already finalized")


class AuthenticationError(EngineError):
    """Authentication failed (e.g. a webhook signature does not verify)."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, 401)
