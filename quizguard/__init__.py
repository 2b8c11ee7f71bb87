"""quizguard: retry and circuit-breaker core for calls to flaky remote APIs."""

__version__ = "0.1.0"
