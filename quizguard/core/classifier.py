"""Boundary translation from raw exceptions to ``ClassifiedError``.

The resilience core never inspects raw exceptions.  Call sites run whatever
they catch through ``classify_error`` and raise the result, chaining the
original as ``__cause__``.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from quizguard.core.errors import ClassifiedError, ErrorCode, Severity

_NETWORK_INDICATORS = (
    "network error",
    "fetch failed",
    "connection refused",
    "timeout",
    "econnrefused",
    "enotfound",
    "etimedout",
)

_VALIDATION_INDICATORS = (
    "validation",
    "invalid",
    "required",
    "must be",
    "should be",
)

_UNAVAILABLE_MESSAGE = "The service is temporarily unavailable. Please try again later."
_GENERIC_MESSAGE = "An unexpected error occurred. Please try again."


def classify_status(status: int, message: str = "", context: dict[str, Any] | None = None) -> ClassifiedError:
    """Map an HTTP status code from a provider API to a ``ClassifiedError``."""
    ctx = {**(context or {}), "status": status}

    if status == 401:
        return ClassifiedError(
            "API authentication failed",
            ErrorCode.API_KEY_INVALID,
            "Service configuration error. Please contact support.",
            Severity.CRITICAL,
            ctx,
        )
    if status == 429:
        return ClassifiedError(
            "Rate limit exceeded",
            ErrorCode.RATE_LIMIT,
            "Too many requests. Please wait a moment and try again.",
            Severity.MEDIUM,
            ctx,
        )
    if status in (402, 403):
        return ClassifiedError(
            "API quota exceeded",
            ErrorCode.API_QUOTA_EXCEEDED,
            "Service quota exceeded. Please contact support.",
            Severity.HIGH,
            ctx,
        )
    if status == 404:
        return ClassifiedError(
            "Resource not found",
            ErrorCode.NOT_FOUND,
            "The requested data could not be found.",
            Severity.LOW,
            ctx,
        )
    if status in (500, 502, 503, 504):
        return ClassifiedError(
            f"Service error (HTTP {status})",
            ErrorCode.SERVICE_UNAVAILABLE,
            _UNAVAILABLE_MESSAGE,
            Severity.HIGH,
            ctx,
        )
    return ClassifiedError(
        f"API error: {message or f'HTTP {status}'}",
        ErrorCode.UNKNOWN_ERROR,
        "A service error occurred. Please try again.",
        Severity.MEDIUM,
        ctx,
    )


def _classify_transport(exc: httpx.TransportError, context: dict[str, Any]) -> ClassifiedError:
    if isinstance(exc, httpx.TimeoutException):
        return ClassifiedError(
            f"Request timed out: {exc}",
            ErrorCode.TIMEOUT,
            "The service took too long to respond. Please try again.",
            Severity.MEDIUM,
            context,
        )
    if isinstance(exc, httpx.ConnectError):
        return ClassifiedError(
            f"Connection failed: {exc}",
            ErrorCode.CONNECTION_ERROR,
            "Unable to connect to the server. Please check your internet connection.",
            Severity.MEDIUM,
            context,
        )
    return ClassifiedError(
        f"Network request failed: {exc}",
        ErrorCode.NETWORK_ERROR,
        "Unable to connect to the server. Please check your internet connection.",
        Severity.MEDIUM,
        context,
    )


def classify_error(exc: BaseException, context: dict[str, Any] | None = None) -> ClassifiedError:
    """Convert any exception into a ``ClassifiedError``.

    Already-classified errors are returned unchanged.  HTTP failures are
    classified by status, transport failures by type, and everything else
    by message heuristics, falling back to ``UNKNOWN_ERROR``.

    Args:
        exc:     The raw exception caught at the call site.
        context: Extra details merged into the classified error's context.
    """
    if isinstance(exc, ClassifiedError):
        return exc

    ctx = dict(context or {})

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, str(exc), ctx)

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return classify_status(status, str(exc), ctx)

    if isinstance(exc, httpx.TransportError):
        return _classify_transport(exc, ctx)

    if isinstance(exc, ValidationError):
        return ClassifiedError(
            str(exc),
            ErrorCode.VALIDATION_ERROR,
            "Please check your input and try again.",
            Severity.LOW,
            ctx,
        )

    text = str(exc).lower()
    if any(indicator in text for indicator in _NETWORK_INDICATORS):
        return ClassifiedError(
            "Network request failed",
            ErrorCode.NETWORK_ERROR,
            "Unable to connect to the server. Please check your internet connection.",
            Severity.MEDIUM,
            ctx,
        )
    if any(indicator in text for indicator in _VALIDATION_INDICATORS):
        return ClassifiedError(
            str(exc) or "Validation failed",
            ErrorCode.VALIDATION_ERROR,
            "Please check your input and try again.",
            Severity.LOW,
            ctx,
        )

    return ClassifiedError(
        str(exc) or "Unknown error occurred",
        ErrorCode.UNKNOWN_ERROR,
        _GENERIC_MESSAGE,
        Severity.MEDIUM,
        {**ctx, "original_error": type(exc).__name__},
    )
