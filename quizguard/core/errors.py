"""Classified error hierarchy for calls to remote dependencies.

Every failure the resilience core reasons about is a ``ClassifiedError``:
an exception tagged with a symbolic ``ErrorCode`` from a closed taxonomy.
Retry decisions are a pure function of that code.  The circuit breaker
synthesizes its own ``CircuitOpenError`` when it short-circuits a call.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Closed taxonomy of error kinds surfaced by remote operations."""

    # Transient, safe to retry
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"

    # Caller or configuration faults
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    API_KEY_INVALID = "API_KEY_INVALID"

    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class Severity(str, Enum):
    """Informational severity; never consulted for retry decisions."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RETRYABLE_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.RATE_LIMIT,
        ErrorCode.TIMEOUT,
        ErrorCode.CONNECTION_ERROR,
    }
)

# Expected caller-side faults that monitoring does not need to hear about
_NON_REPORTABLE_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.INVALID_INPUT,
        ErrorCode.PERMISSION_DENIED,
        ErrorCode.NOT_FOUND,
    }
)


class ClassifiedError(Exception):
    """A failure tagged with a symbolic error kind.

    Args:
        message:      Developer-facing description.
        code:         Error kind from ``ErrorCode``.
        user_message: End-user-facing description (passed through untouched).
        severity:     Informational severity.
        context:      Optional structured details for logging.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        user_message: str = "",
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = ErrorCode(code)
        self.user_message = user_message or "An unexpected error occurred. Please try again."
        self.severity = Severity(severity)
        self.context = dict(context or {})
        self.timestamp = datetime.now(UTC)
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def should_report(self) -> bool:
        """Return True if this error belongs in monitoring."""
        return self.code not in _NON_REPORTABLE_CODES or self.severity == Severity.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable record for structured logging."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code.value})"


class CircuitOpenError(ClassifiedError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        backend_name: Name of the protected dependency.
        retry_after:  Seconds until the breaker admits a probe call.
    """

    def __init__(self, backend_name: str, retry_after: float) -> None:
        self.backend_name = backend_name
        self.retry_after = max(0.0, retry_after)
        super().__init__(
            f"Circuit open for '{backend_name}', retry after {self.retry_after:.1f}s",
            ErrorCode.SERVICE_UNAVAILABLE,
            "Service is temporarily unavailable. Please try again later.",
            Severity.HIGH,
            {"backend": backend_name, "retry_after": self.retry_after},
        )


class StructuredErrorResponse(BaseModel):
    """Error envelope handed to API callers: ``{error, code, request_id}``.

    Never carries stack traces or internal messages.
    """

    error: str
    code: str
    request_id: str

    @classmethod
    def from_exception(cls, exc: BaseException, request_id: str) -> StructuredErrorResponse:
        """Create from an exception, exposing only user-facing text."""
        if isinstance(exc, CircuitOpenError):
            return cls(error=exc.user_message, code="CIRCUIT_OPEN", request_id=request_id)
        if isinstance(exc, ClassifiedError):
            return cls(error=exc.user_message, code=exc.code.value, request_id=request_id)
        # Unclassified: never expose internal details
        return cls(
            error="An internal error occurred",
            code="INTERNAL_ERROR",
            request_id=request_id,
        )
