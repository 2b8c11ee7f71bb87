"""ProviderDispatcher: HTTP calls to remote providers behind breaker + retry.

Each dependency (LLM, speech, data store) maps to a base URL from Settings.
``ProviderDispatcher.call()`` sends one JSON request per attempt, classifies
any failure at the boundary, retries transient ones with ``with_api_retry``
and runs the whole sequence through the dependency's shared circuit breaker.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from quizguard.core.classifier import classify_error
from quizguard.core.config import Settings
from quizguard.resilience.registry import CircuitBreakerRegistry, Dependency, build_registry
from quizguard.resilience.retry import APIRetryOptions, Sleep, retry_options, with_api_retry

logger = logging.getLogger(__name__)


@dataclass
class ProviderResponse:
    """Structured response from a provider call.

    Attributes:
        status_code: HTTP status code from the provider.
        body:        Parsed JSON body (empty dict if no body).
        elapsed_ms:  Round-trip time of the successful attempt.
    """

    status_code: int
    body: dict
    elapsed_ms: float


def _base_urls(settings: Settings) -> dict[str, str]:
    return {
        Dependency.OPENAI.value: settings.OPENAI_BASE_URL,
        Dependency.ELEVENLABS.value: settings.ELEVENLABS_BASE_URL,
        Dependency.FIREBASE.value: settings.FIREBASE_BASE_URL,
    }


class ProviderDispatcher:
    """Dispatches JSON requests to provider APIs.

    Uses one pooled ``httpx.AsyncClient`` per dependency.  Breakers come
    from *registry* so they are shared with any other caller of the same
    provider.

    Args:
        settings:  Provider URLs, timeouts and retry defaults.
        registry:  Breaker registry; built from *settings* when omitted.
        sleep:     Backoff delay primitive, forwarded to ``with_api_retry``.
        transport: httpx transport shared by all pooled clients; the
                   default network transport when omitted.
    """

    def __init__(
        self,
        settings: Settings,
        registry: CircuitBreakerRegistry | None = None,
        *,
        sleep: Sleep | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_urls = _base_urls(settings)
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.registry = registry if registry is not None else build_registry(settings)
        self.retry_options = retry_options(settings, APIRetryOptions)
        self._sleep = sleep
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    def _get_client(self, name: str) -> httpx.AsyncClient:
        if name not in self._clients:
            self._clients[name] = httpx.AsyncClient(
                base_url=self.base_urls[name],
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._clients[name]

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        name: str,
        method: str,
        path: str,
        payload: dict | None,
    ) -> ProviderResponse:
        """Send a single request; raise a classified error on any failure."""
        start = time.monotonic()
        try:
            if method.upper() == "GET":
                response = await client.get(path, params=payload or None)
            else:
                response = await client.request(method.upper(), path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise classify_error(exc, {"dependency": name, "path": path}) from exc

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        return ProviderResponse(
            status_code=response.status_code,
            body=body,
            elapsed_ms=round((time.monotonic() - start) * 1000, 2),
        )

    async def call(
        self,
        dependency: str | Dependency,
        path: str,
        payload: dict | None = None,
        *,
        method: str = "POST",
    ) -> ProviderResponse:
        """Send *payload* to *dependency* at *path*.

        Raises:
            KeyError: If *dependency* is not a known provider.
            ClassifiedError: The classified failure of the final attempt.
            CircuitOpenError: If the dependency's circuit is open.
        """
        name = dependency.value if isinstance(dependency, Dependency) else dependency
        if name not in self.base_urls:
            raise KeyError(f"Unknown dependency: {name}")

        breaker = self.registry.get(name)
        client = self._get_client(name)
        retry_kwargs: dict[str, Any] = {} if self._sleep is None else {"sleep": self._sleep}

        async def _with_retry() -> ProviderResponse:
            return await with_api_retry(
                lambda: self._attempt(client, name, method, path, payload),
                self.retry_options,
                **retry_kwargs,
            )

        logger.debug("Dispatching %s %s to %s", method, path, name)
        return await breaker.execute(_with_retry)

    async def close(self) -> None:
        """Close all pooled httpx clients."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
