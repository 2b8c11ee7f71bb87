"""Settings for the quizguard resilience core.

All settings are loaded from environment variables with the QUIZGUARD_ prefix.
Durations are in seconds.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """quizguard configuration.

    All fields can be overridden by environment variables prefixed with
    ``QUIZGUARD_``.  For example, ``QUIZGUARD_RETRY_MAX_ATTEMPTS=5`` raises
    the default attempt budget.
    """

    # ── Remote dependencies ─────────────────────────────────────────
    OPENAI_BASE_URL: str = "https://api.openai.com"
    ELEVENLABS_BASE_URL: str = "https://api.elevenlabs.io"
    FIREBASE_BASE_URL: str = "https://firestore.googleapis.com"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # ── Retry defaults ──────────────────────────────────────────────
    RETRY_MAX_ATTEMPTS: int = 3  # Total attempts including the first
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # ── Circuit breakers (one per dependency) ───────────────────────
    OPENAI_BREAKER_THRESHOLD: int = 3  # Consecutive failures before OPEN
    OPENAI_BREAKER_RECOVERY_SECONDS: float = 30.0  # Cooldown before a probe
    OPENAI_BREAKER_WINDOW_SECONDS: float | None = 60.0  # Failure streak expiry

    ELEVENLABS_BREAKER_THRESHOLD: int = 3
    ELEVENLABS_BREAKER_RECOVERY_SECONDS: float = 30.0
    ELEVENLABS_BREAKER_WINDOW_SECONDS: float | None = 60.0

    FIREBASE_BREAKER_THRESHOLD: int = 5  # Data store is less sensitive
    FIREBASE_BREAKER_RECOVERY_SECONDS: float = 60.0
    FIREBASE_BREAKER_WINDOW_SECONDS: float | None = 120.0

    model_config = {
        "env_prefix": "QUIZGUARD_",
    }
