"""Resilience patterns: circuit breaker and retry for remote dependencies.

Provides deterministic exponential-backoff retry for transient failures and
per-dependency circuit breakers that fail fast during sustained outages.
"""

from quizguard.resilience.circuit_breaker import (
    BreakerSnapshot,
    CircuitBreaker,
    CircuitState,
)
from quizguard.resilience.registry import (
    BreakerConfig,
    CircuitBreakerRegistry,
    Dependency,
    build_registry,
    get_registry,
)
from quizguard.resilience.retry import (
    APIRetryOptions,
    RetryOptions,
    retry_batch,
    with_api_retry,
    with_circuit_breaker_and_retry,
    with_retry,
)

__all__ = [
    "APIRetryOptions",
    "BreakerConfig",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "Dependency",
    "RetryOptions",
    "build_registry",
    "get_registry",
    "retry_batch",
    "with_api_retry",
    "with_circuit_breaker_and_retry",
    "with_retry",
]
