"""Process-wide registry of per-dependency circuit breakers.

The registry is built once from Settings with a fixed set of dependency
names.  Call sites look breakers up by name so that every call to the same
provider shares one failure record.  Pass the registry explicitly where
possible; ``get_registry()`` is the cached accessor for code that cannot.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field

from quizguard.core.config import Settings
from quizguard.resilience.circuit_breaker import CircuitBreaker


class Dependency(str, Enum):
    """Remote dependencies protected by a circuit breaker."""

    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"
    FIREBASE = "firebase"


class BreakerConfig(BaseModel):
    """Thresholds for one dependency's breaker."""

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, gt=0.0)
    monitoring_window: float | None = Field(default=None, gt=0.0)


class CircuitBreakerRegistry:
    """Fixed mapping of dependency name to ``CircuitBreaker``.

    Usage::

        registry = build_registry(Settings())
        result = await registry[Dependency.OPENAI].execute(call_openai)
    """

    def __init__(self, configs: Mapping[str | Dependency, BreakerConfig]) -> None:
        self._breakers: dict[str, CircuitBreaker] = {
            _key(name): CircuitBreaker(
                name=_key(name),
                failure_threshold=cfg.failure_threshold,
                recovery_timeout=cfg.recovery_timeout,
                monitoring_window=cfg.monitoring_window,
            )
            for name, cfg in configs.items()
        }

    def get(self, name: str | Dependency) -> CircuitBreaker:
        """Return the breaker for *name*; raise ``KeyError`` if unknown."""
        try:
            return self._breakers[_key(name)]
        except KeyError:
            raise KeyError(f"No circuit breaker registered for '{_key(name)}'") from None

    def __getitem__(self, name: str | Dependency) -> CircuitBreaker:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _key(name) in self._breakers

    def __iter__(self) -> Iterator[str]:
        return iter(self._breakers)

    def __len__(self) -> int:
        return len(self._breakers)

    @property
    def names(self) -> list[str]:
        return list(self._breakers)

    def all_snapshots(self) -> list[dict[str, Any]]:
        """Return snapshots for every registered breaker."""
        return [cb.snapshot() for cb in self._breakers.values()]

    def reset_all(self) -> None:
        """Reset every circuit breaker to CLOSED."""
        for cb in self._breakers.values():
            cb.reset()


def _key(name: str | Dependency) -> str:
    return name.value if isinstance(name, Dependency) else name


def build_registry(settings: Settings) -> CircuitBreakerRegistry:
    """Create the breaker for each known dependency from Settings."""
    return CircuitBreakerRegistry(
        {
            Dependency.OPENAI: BreakerConfig(
                failure_threshold=settings.OPENAI_BREAKER_THRESHOLD,
                recovery_timeout=settings.OPENAI_BREAKER_RECOVERY_SECONDS,
                monitoring_window=settings.OPENAI_BREAKER_WINDOW_SECONDS,
            ),
            Dependency.ELEVENLABS: BreakerConfig(
                failure_threshold=settings.ELEVENLABS_BREAKER_THRESHOLD,
                recovery_timeout=settings.ELEVENLABS_BREAKER_RECOVERY_SECONDS,
                monitoring_window=settings.ELEVENLABS_BREAKER_WINDOW_SECONDS,
            ),
            Dependency.FIREBASE: BreakerConfig(
                failure_threshold=settings.FIREBASE_BREAKER_THRESHOLD,
                recovery_timeout=settings.FIREBASE_BREAKER_RECOVERY_SECONDS,
                monitoring_window=settings.FIREBASE_BREAKER_WINDOW_SECONDS,
            ),
        }
    )


@lru_cache(maxsize=1)
def get_registry() -> CircuitBreakerRegistry:
    """Return the process-wide registry, built on first use."""
    return build_registry(Settings())
