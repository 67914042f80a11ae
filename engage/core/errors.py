"""Domain error taxonomy and user-facing error classification."""

from enum import Enum

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Input errors
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"

    # Configuration errors
    ERR_NOT_CONFIGURED = "ERR_NOT_CONFIGURED"

    # Lookup errors
    ERR_NOT_FOUND = "ERR_NOT_FOUND"

    # Channel errors
    ERR_CHANNEL = "ERR_CHANNEL"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class EngageError(Exception):
    """Base class for errors raised by the engage service layer."""

    code: str = ErrorCode.ERR_UNKNOWN


class ValidationError(EngageError):
    """Malformed or missing required input (e.g., a required photo is absent)."""

    code = ErrorCode.ERR_VALIDATION


class InvalidStateTransitionError(ValidationError):
    """Operation not allowed from the record's current status."""

    code = ErrorCode.ERR_INVALID_STATE_TRANSITION


class ConfigurationError(EngageError):
    """Referenced project, template or day is not configured."""

    code = ErrorCode.ERR_NOT_CONFIGURED


class NotFoundError(EngageError):
    """Referenced record does not exist."""

    code = ErrorCode.ERR_NOT_FOUND


class ChannelError(EngageError):
    """Outbound send failed. Recorded per recipient, never raised past the dispatch loop."""

    code = ErrorCode.ERR_CHANNEL

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Domain errors keep their own message, since it is already written for the
    person who triggered it.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, InvalidStateTransitionError):
        return ErrorResponse(
            code=exception.code,
            message=str(exception),
            suggestion="Check the current status of the submission and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ValidationError):
        return ErrorResponse(
            code=exception.code,
            message=str(exception),
            suggestion="Fix the highlighted input and submit again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ConfigurationError):
        return ErrorResponse(
            code=exception.code,
            message=str(exception),
            suggestion="Ask a project administrator to configure this project day.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, NotFoundError):
        return ErrorResponse(
            code=exception.code,
            message=str(exception),
            suggestion="Refresh the page; the record may have been removed.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ChannelError):
        return ErrorResponse(
            code=exception.code,
            message="The messaging provider rejected the request.",
            suggestion="Check the channel connection for this project.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
