"""Error categories and exception hierarchy for resilience."""
from typing import Any, Iterable, Optional
from enum import Enum
from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Standard API error codes."""

    # Not found errors
    NOT_FOUND = "NOT_FOUND_002"
    TASK_NOT_FOUND = "NOT_FOUND_004"
    GENERATION_NOT_FOUND = "NOT_FOUND_005"

    # State errors
    INVALID_STATE = "STATE_001"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_005"
    DATABASE_ERROR = "INTERNAL_006"
    SERVICE_UNAVAILABLE = "INTERNAL_007"


class ErrorResponse(BaseModel):
    """Standard error response model."""

    code: ErrorCode = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Extra error details")


class ErrorCategory(Enum):
    """Error category for handling decisions."""

    TRANSIENT = "transient"  # retry on the normal schedule
    PERMANENT = "permanent"  # fail immediately


class ErrorKind(str, Enum):
    """
    Closed classification of a task failure.

    Assigned once when the error is written to a task and used for every
    later retry decision. The free-text message is kept for display only.
    """

    TRANSIENT = "transient"
    VALIDATION = "validation"
    AUTH = "auth"
    CONTENT_POLICY = "content_policy"
    TIMEOUT = "timeout"
    VENDOR_FAILED = "vendor_failed"
    SUBMISSION = "submission"
    UNKNOWN = "unknown"


NON_RETRYABLE_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.AUTH, ErrorKind.CONTENT_POLICY})

_VALIDATION_PATTERNS: tuple[str, ...] = ("validation", "invalid", "bad request")
_AUTH_PATTERNS: tuple[str, ...] = ("unauthorized", "forbidden")
_CONTENT_POLICY_PATTERNS: tuple[str, ...] = ("content policy", "inappropriate")
_TIMEOUT_PATTERNS: tuple[str, ...] = ("timed out", "timeout", "exceeded")
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "server error",
    "500",
    "502",
    "503",
    "504",
    "rate limit",
    "connection",
    "temporarily",
)


def _matches(message: str, patterns: Iterable[str]) -> bool:
    return any(pattern in message for pattern in patterns)


def classify_error_message(
    message: Optional[str],
    default: ErrorKind = ErrorKind.UNKNOWN,
) -> ErrorKind:
    """
    Classify a free-text failure message into an ErrorKind.

    Non-retryable classes are checked first so a message such as
    "validation timeout" stays non-retryable.
    """
    if not message:
        return default

    lowered = message.lower()
    if _matches(lowered, _CONTENT_POLICY_PATTERNS):
        return ErrorKind.CONTENT_POLICY
    if _matches(lowered, _AUTH_PATTERNS):
        return ErrorKind.AUTH
    if _matches(lowered, _VALIDATION_PATTERNS):
        return ErrorKind.VALIDATION
    if _matches(lowered, _TIMEOUT_PATTERNS):
        return ErrorKind.TIMEOUT
    if _matches(lowered, _TRANSIENT_PATTERNS):
        return ErrorKind.TRANSIENT
    return default


def is_retryable_kind(kind: Optional[ErrorKind]) -> bool:
    """True unless the kind belongs to the non-retryable set."""
    return kind not in NON_RETRYABLE_KINDS


class BaseServiceError(Exception):
    """Base exception for all service errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        service: str,
        operation: str,
        correlation_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize service error.

        Args:
            message: Error message
            category: Error category for handling
            service: Service name (e.g., "vendor", "tracking")
            operation: Operation being performed (e.g., "get_task_status")
            correlation_id: Optional vendor task id for context
            details: Additional error details
            original_error: Original exception that caused this error
        """
        self.message = message
        self.category = category
        self.service = service
        self.operation = operation
        self.correlation_id = correlation_id
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "service": self.service,
            "operation": self.operation,
            "correlation_id": self.correlation_id,
            "details": self.details,
        }


class TransientError(BaseServiceError):
    """Temporary failure, retried on the normal schedule."""

    def __init__(
        self,
        message: str,
        service: str,
        operation: str,
        correlation_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.TRANSIENT,
            service=service,
            operation=operation,
            correlation_id=correlation_id,
            details=details,
            original_error=original_error,
        )


class PermanentError(BaseServiceError):
    """Failure that must not be retried automatically."""

    def __init__(
        self,
        message: str,
        service: str,
        operation: str,
        correlation_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.PERMANENT,
            service=service,
            operation=operation,
            correlation_id=correlation_id,
            details=details,
            original_error=original_error,
        )


# Vendor errors

class VendorTransientError(TransientError):
    """Vendor API unreachable, rate limited or returning 5xx."""

    kind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        correlation_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        super().__init__(
            message=message,
            service="vendor",
            operation=operation,
            correlation_id=correlation_id,
            details={"status_code": status_code},
            original_error=original_error,
        )


class VendorRejectedError(PermanentError):
    """Vendor refused the request (validation, auth or content policy)."""

    def __init__(
        self,
        message: str,
        operation: str,
        kind: ErrorKind,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(
            message=message,
            service="vendor",
            operation=operation,
            correlation_id=correlation_id,
            details={"status_code": status_code, "kind": kind.value, "error_code": error_code},
        )


# Tracking errors

class TaskNotFoundError(PermanentError):
    """No task with the given correlation id."""

    def __init__(self, correlation_id: str):
        super().__init__(
            message=f"Task not found: {correlation_id}",
            service="tracking",
            operation="lookup_task",
            correlation_id=correlation_id,
        )


class GenerationNotFoundError(PermanentError):
    """No generation with the given external id."""

    def __init__(self, generation_id: str):
        self.generation_id = generation_id
        super().__init__(
            message=f"Generation not found: {generation_id}",
            service="tracking",
            operation="lookup_generation",
            details={"generation_id": generation_id},
        )


class InvalidTaskStateError(PermanentError):
    """Requested action is not allowed in the task's current status."""

    def __init__(self, correlation_id: str, status: str, action: str):
        self.status = status
        super().__init__(
            message=f"Task {correlation_id} is {status}; cannot {action} without force",
            service="tracking",
            operation=action,
            correlation_id=correlation_id,
            details={"status": status},
        )


class TaskNotRetryableError(PermanentError):
    """Task failed with a non-retryable error or hit the retry cap."""

    def __init__(self, correlation_id: str, reason: str):
        self.reason = reason
        super().__init__(
            message=f"Task {correlation_id} is not retryable ({reason}); use force to override",
            service="tracking",
            operation="retry_task",
            correlation_id=correlation_id,
            details={"reason": reason},
        )
