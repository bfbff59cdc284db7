"""
backend/oddsline/providers/http_client.py

Purpose:
    Outbound HTTP for upstream feeds: an httpx.AsyncClient wrapper with
    bounded retries, exponential backoff honouring Retry-After, and a circuit
    breaker that callers consult before spending quota on a failing upstream.

Dependencies:
    - httpx
"""

import asyncio
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("oddsline.http_client")

# Retryable HTTP status codes. 401/403 are included because the feed reports
# an exhausted quota that way and it may clear on the next window. Other 4xx
# (400, 404, 422) are caller errors and are returned after a single attempt.
RETRYABLE_STATUSES = frozenset({401, 403, 408, 425, 429, 500, 502, 503, 504})
_MAX_DELAY_SECONDS = 60.0
_NETWORK_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError, httpx.ReadError)


class CircuitBreaker:
    """Counts consecutive upstream failures.

    ``closed`` lets every call through. After ``failure_threshold`` failures it
    turns ``open`` and refuses calls until ``recovery_timeout`` seconds have
    passed, then ``half_open`` lets one trial request through: a success closes
    it, a failure re-opens it for another full timeout.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self._clock = clock
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if self._clock() - self.opened_at >= self.recovery_timeout:
            return "half_open"
        return "open"

    def record_success(self) -> None:
        if self.opened_at is not None:
            logger.info("Circuit breaker closed after successful trial request")
        self.failure_count = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state == "half_open" or (self.opened_at is None and self.failure_count >= self.failure_threshold):
            self.opened_at = self._clock()
            logger.warning("Circuit breaker OPEN after %d failures", self.failure_count)

    def can_attempt(self) -> bool:
        state = self.state
        if state == "half_open":
            logger.info("Circuit breaker half-open, allowing a trial request")
        return state != "open"


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Extract wait time from Retry-After or X-RateLimit-Retry-After headers."""
    for header in ("retry-after", "x-ratelimit-retry-after"):
        value = response.headers.get(header)
        if value is None:
            continue
        try:
            return float(value)
        except (ValueError, TypeError):
            continue
    return None


def safe_url(url: str) -> str:
    """Strip query params (they carry the API key) for safe logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient wrapper with bounded retry, exponential backoff and a circuit breaker.

    Retryable statuses are retried; once attempts are exhausted the last
    response is returned so the caller decides how to degrade. A network error
    on every attempt re-raises the last ``httpx`` exception.
    """

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._name = name
        self._max_retries = max(0, int(max_retries))
        self._base_delay = max(0.0, float(base_delay))
        self.circuit = circuit or CircuitBreaker()

    @property
    def attempts(self) -> int:
        return self._max_retries + 1

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_exc: Optional[Exception] = None
        last_resp: Optional[httpx.Response] = None

        for attempt in range(self.attempts):
            try:
                resp = await self._client.request(method, url, **kwargs)

                if resp.status_code not in RETRYABLE_STATUSES:
                    return resp

                last_resp = resp
                if resp.status_code == 429:
                    logger.warning(
                        "[%s] Rate limited (429) on %s %s (attempt %d/%d)",
                        self._name, method, safe_url(url), attempt + 1, self.attempts,
                    )
                else:
                    logger.warning(
                        "[%s] HTTP %d on %s %s (attempt %d/%d)",
                        self._name, resp.status_code, method, safe_url(url), attempt + 1, self.attempts,
                    )

                if attempt < self._max_retries:
                    delay = _parse_retry_after(resp)
                    if delay is None:
                        delay = self._base_delay * (2 ** attempt)
                    await asyncio.sleep(min(delay, _MAX_DELAY_SECONDS))

            except _NETWORK_ERRORS as exc:
                last_exc = exc
                logger.warning(
                    "[%s] Network error on %s %s (attempt %d/%d): %s",
                    self._name, method, safe_url(url), attempt + 1, self.attempts, exc,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(min(self._base_delay * (2 ** attempt), _MAX_DELAY_SECONDS))

        if last_resp is not None:
            logger.error(
                "[%s] All %d attempts failed for %s %s (last status: %d)",
                self._name, self.attempts, method, safe_url(url), last_resp.status_code,
            )
            return last_resp

        logger.error(
            "[%s] All %d attempts failed for %s %s: %s",
            self._name, self.attempts, method, safe_url(url), last_exc,
        )
        raise last_exc  # type: ignore[misc]

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
