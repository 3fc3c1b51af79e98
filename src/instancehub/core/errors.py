"""Error handling module for instancehub.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": "Failed to create instance",
    "message": "Docker daemon is not running"
}

"message" is omitted when there is nothing to add to the title, and
validation failures add an "errors" mapping of field -> messages. The
machine-readable code travels in the X-Error-Code response header.

Usage:
    from instancehub.core.errors import InstanceNotFoundError, CommandFailedError

    # Raise with default title
    raise InstanceNotFoundError()

    # Raise with the runtime's own message
    raise CommandFailedError("port is already allocated")
"""

from enum import Enum

from pydantic import BaseModel

ERROR_CODE_HEADER = "X-Error-Code"


class ErrorCode(str, Enum):
    """Error codes."""

    INVALID_PATH = "INVALID_PATH"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_RUNNING = "NOT_RUNNING"
    PROXY_FAILURE = "PROXY_FAILURE"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    DAEMON_UNAVAILABLE = "DAEMON_UNAVAILABLE"
    IMAGE_UNAVAILABLE = "IMAGE_UNAVAILABLE"
    PORTS_EXHAUSTED = "PORTS_EXHAUSTED"
    COMMAND_FAILED = "COMMAND_FAILED"
    RUNTIME_TIMEOUT = "RUNTIME_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Error response format."""

    error: str
    message: str | None = None
    errors: dict[str, list[str]] | None = None


class InstanceHubError(Exception):
    """Base exception for instancehub.

    All instancehub specific exceptions should inherit from this class.
    This enables centralized exception handling in FastAPI.

    Attributes:
        code: The error code from ErrorCode enum
        error: Short human-readable title
        message: Optional detail (usually the underlying cause)
        status_code: HTTP status code to return
    """

    def __init__(
        self,
        code: ErrorCode,
        error: str,
        status_code: int,
        message: str | None = None,
    ) -> None:
        self.code = code
        self.error = error
        self.message = message
        self.status_code = status_code
        super().__init__(message or error)

    @property
    def detail(self) -> str:
        """Most specific human-readable description."""
        return self.message or self.error

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(error=self.error, message=self.message)


# =============================================================================
# Proxy errors
# =============================================================================


class InvalidPathError(InstanceHubError):
    """400 Bad Request - Proxy path does not name an instance and sub-path."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.INVALID_PATH, "Invalid API path", 400)


class InstanceNotFoundError(InstanceHubError):
    """404 Not Found - Instance not found."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, "Instance not found", 404)


class InstanceNotRunningError(InstanceHubError):
    """503 Service Unavailable - Instance exists but is not running."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.NOT_RUNNING, "Instance is not running", 503)


class ProxyFailureError(InstanceHubError):
    """500 Internal Server Error - Upstream request failed."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.PROXY_FAILURE, "Proxy request failed", 500, message)


# =============================================================================
# Management API errors
# =============================================================================


class InvalidStateError(InstanceHubError):
    """409 Conflict - Operation not possible in the current state."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_STATE, "Invalid instance state", 409, message)


class ValidationFailedError(InstanceHubError):
    """422 Unprocessable Entity - Request data failed validation."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        self.errors = errors
        first = next((msgs[0] for msgs in errors.values() if msgs), None)
        super().__init__(ErrorCode.VALIDATION_FAILED, "Validation failed", 422, first)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.error, message=self.message, errors=self.errors)


class NameTakenError(ValidationFailedError):
    """422 - Another instance already uses this name."""

    def __init__(self) -> None:
        super().__init__({"name": ["The name has already been taken."]})


# =============================================================================
# Runtime errors
# =============================================================================


class RuntimeUnavailableError(InstanceHubError):
    """503 Service Unavailable - Container runtime unreachable."""

    def __init__(self, message: str = "Container runtime is not reachable") -> None:
        super().__init__(
            ErrorCode.RUNTIME_UNAVAILABLE, "Runtime unavailable", 503, message
        )


class DaemonUnavailableError(RuntimeUnavailableError):
    """503 Service Unavailable - Daemon failed its liveness probe."""

    def __init__(
        self,
        message: str = "Docker daemon is not running. Start Docker and try again.",
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode.DAEMON_UNAVAILABLE
        self.error = "Docker daemon unavailable"


class ImageUnavailableError(InstanceHubError):
    """500 - Backend image is missing and could not be pulled."""

    def __init__(self, image: str, reason: str | None = None) -> None:
        self.image = image
        message = f"Failed to pull Docker image {image}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(ErrorCode.IMAGE_UNAVAILABLE, "Image unavailable", 500, message)


class PortsExhaustedError(InstanceHubError):
    """500 - No free port left in the configured range."""

    def __init__(self, min_port: int, max_port: int) -> None:
        super().__init__(
            ErrorCode.PORTS_EXHAUSTED,
            "No available ports",
            500,
            f"No available ports in range {min_port}-{max_port}",
        )


class CommandFailedError(InstanceHubError):
    """500 - Runtime rejected or failed the requested operation."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.COMMAND_FAILED, "Runtime command failed", 500, message)


class RuntimeTimeoutError(InstanceHubError):
    """500 - Runtime call exceeded its timeout."""

    def __init__(self, message: str = "Runtime call timed out") -> None:
        super().__init__(ErrorCode.RUNTIME_TIMEOUT, "Runtime timeout", 500, message)


class InternalError(InstanceHubError):
    """500 Internal Server Error."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.INTERNAL_ERROR, "Internal server error", 500, message)


class OperationFailedError(InstanceHubError):
    """Lifecycle operation failure surfaced by the management API.

    Keeps the status code and error code of the underlying cause so a
    runtime outage still maps to 503.
    """

    def __init__(self, action: str, cause: Exception) -> None:
        self.cause = cause
        if isinstance(cause, InstanceHubError):
            code, status_code, message = cause.code, cause.status_code, cause.detail
        else:
            code, status_code, message = ErrorCode.INTERNAL_ERROR, 500, str(cause)
        super().__init__(code, f"Failed to {action} instance", status_code, message)
