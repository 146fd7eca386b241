"""
Resilient HTTP client for third-party market data APIs.
"""

import asyncio
import functools
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

import httpx

from shared.errors import RateLimitedError, SecurityError, TransportError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryState

from ..caching import ResponseCache
from ..models import Priority, ServiceMetrics, ValidationResult
from ..ratelimit import RateTracker


CUSTOMER_MESSAGES = {
    429: "Service is experiencing high demand. Please try again in a moment.",
    500: "Service temporarily unavailable. Our team has been notified.",
    503: "Service under maintenance. Please try again shortly.",
    404: "The requested information is not available.",
}
DEFAULT_CUSTOMER_MESSAGE = "Unable to connect to service. Please check your connection and try again."

SLOW_RESPONSE_MS = 3000

Validator = Callable[[Any], ValidationResult]


def customer_message_for(status_code: Optional[int]) -> str:
    """Map an upstream HTTP status to a non-technical message."""
    if status_code in CUSTOMER_MESSAGES:
        return CUSTOMER_MESSAGES[status_code]
    if status_code is not None and 500 <= status_code < 600:
        return CUSTOMER_MESSAGES[500]
    return DEFAULT_CUSTOMER_MESSAGE


@dataclass(frozen=True)
class TransportResponse:
    """Payload returned by the client plus where it came from."""

    data: Any
    status_code: int = 200
    from_cache: bool = False
    is_stale: bool = False
    elapsed_ms: float = 0.0


class TransportClient:
    """HTTP wrapper with caching, rate limiting, retries and coalescing.

    A GET goes through, in order: domain allow-list, response cache,
    in-flight coalescing, the rate tracker, the network (bounded by a hard
    timeout and retried on network errors and 5xx), optional payload
    validation, and finally the cache write. When retries run out the
    last-known-good payload is served before an error is raised.
    """

    def __init__(self,
                 base_url: str,
                 *,
                 name: str = "default",
                 timeout_seconds: float = 8.0,
                 retries: int = 3,
                 cache_ttl_seconds: float = 300.0,
                 priority: Union[Priority, str] = Priority.NORMAL,
                 customer_facing: bool = True,
                 trusted_domains: Optional[Iterable[str]] = None,
                 cache: Optional[ResponseCache] = None,
                 stale_cache: Optional[ResponseCache] = None,
                 stale_ttl_seconds: float = 86400.0,
                 rate_tracker: Optional[RateTracker] = None,
                 retry_config: Optional[RetryConfig] = None,
                 max_request_bytes: int = 1048576,
                 max_response_bytes: int = 1048576,
                 api_key: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.base_url = base_url.rstrip('/')
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.stale_ttl_seconds = stale_ttl_seconds
        self.priority = Priority(priority)
        self.customer_facing = customer_facing
        self.max_request_bytes = max_request_bytes
        self.max_response_bytes = max_response_bytes
        self.logger = get_logger(f"market_data.transport.{name}")

        base_host = httpx.URL(self.base_url).host
        if trusted_domains is None:
            trusted_domains = [base_host]
        self.trusted_domains = [d.lower() for d in trusted_domains]

        self.cache = cache if cache is not None else ResponseCache(name=name)
        self.stale_cache = stale_cache if stale_cache is not None else ResponseCache(name=f"{name}.stale")
        self.rate_tracker = rate_tracker if rate_tracker is not None else RateTracker()
        self.retry_config = retry_config if retry_config is not None else RetryConfig(
            max_attempts=retries + 1,
            base_delay=1.0,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=False
        )
        self.metrics = ServiceMetrics()
        self._collector = metrics
        self._api_key = api_key
        self._sleep = sleep
        self._clock = clock
        self._inflight: Dict[str, "asyncio.Future[TransportResponse]"] = {}
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            headers={
                "Accept": "application/json",
                "User-Agent": "TimeVault/1.0.0",
                "X-TimeVault-Client": "market-data-service",
            },
        )

    async def get(self,
                  url: str,
                  params: Optional[Dict[str, Any]] = None,
                  *,
                  validator: Optional[Validator] = None,
                  force_refresh: bool = False) -> TransportResponse:
        """GET with cache, coalescing, retries and stale fallback."""
        full_url = self._resolve_url(url)
        self._check_domain(full_url)
        key = self._cache_key("GET", full_url, params)

        if not force_refresh:
            cached = self.cache.get(key)
            self._record_cache_lookup(cached is not None)
            if cached is not None:
                return TransportResponse(data=cached, from_cache=True)

        inflight = self._inflight.get(key)
        if inflight is not None:
            self.logger.debug("Coalescing request with in-flight fetch", key=key)
            return await asyncio.shield(inflight)

        task = asyncio.ensure_future(
            self._execute("GET", full_url, key, params=params, validator=validator)
        )
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._release_inflight, key))
        return await asyncio.shield(task)

    async def post(self,
                   url: str,
                   body: Any = None,
                   *,
                   validator: Optional[Validator] = None) -> TransportResponse:
        """POST without caching or coalescing."""
        full_url = self._resolve_url(url)
        self._check_domain(full_url)

        if body is not None:
            size = len(json.dumps(body, default=str).encode("utf-8"))
            if size > self.max_request_bytes:
                self.logger.error("Request body too large", size=size, limit=self.max_request_bytes)
                raise SecurityError("Request too large", details={"limit_bytes": self.max_request_bytes})

        key = self._cache_key("POST", full_url, None)
        return await self._execute("POST", full_url, key, json_body=body, validator=validator)

    def get_metrics(self) -> Dict[str, Any]:
        """Running metrics plus cache and rate tracker statistics."""
        return {
            **self.metrics.to_dict(),
            "cache_stats": self.cache.get_stats(),
            "rate_limit_stats": self.rate_tracker.usage_stats(),
            "in_flight": len(self._inflight),
        }

    def clear_cache(self) -> None:
        """Drop fresh cache entries; the last-known-good copies are kept."""
        self.cache.clear()
        self.logger.info("API cache cleared", trigger="customer_service")

    def reset_rate_limits(self) -> None:
        self.rate_tracker.reset()

    def reset_metrics(self) -> None:
        self.metrics.reset()
        self.logger.info("Transport metrics reset", trigger="admin")

    async def close(self) -> None:
        """Close the HTTP client and drop cached state."""
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        await self._client.aclose()
        self.cache.dispose()
        self.stale_cache.dispose()

    async def _execute(self,
                       method: str,
                       url: str,
                       key: str,
                       *,
                       params: Optional[Dict[str, Any]] = None,
                       json_body: Any = None,
                       validator: Optional[Validator] = None) -> TransportResponse:
        endpoint = httpx.URL(url).path or "/"
        if not self.rate_tracker.can_proceed(endpoint, self.priority):
            if self._collector:
                self._collector.increment_counter("rate_limit_rejections_total", client=self.name)
            raise RateLimitedError(details={"client": self.name, "endpoint": endpoint})

        state = RetryState.initial(self.retry_config)
        started = self._clock()
        while True:
            try:
                response = await self._send(method, url, params=params, json_body=json_body)
                break
            except TransportError as exc:
                if exc.retryable and not state.exhausted:
                    self.logger.warning(
                        "Upstream attempt failed, retrying",
                        attempt=state.attempt,
                        max_attempts=state.max_attempts,
                        delay=state.next_delay_seconds,
                        status_code=exc.status_code,
                        endpoint=endpoint
                    )
                    await self._sleep(state.next_delay_seconds)
                    state = state.advance(self.retry_config)
                    continue
                return self._recover(method, key, exc, attempts=state.attempt)

        data = self._decode(response)
        if validator is not None:
            result = validator(data)
            if not result.is_valid:
                self.logger.warning("Upstream payload rejected", endpoint=endpoint, errors=result.errors)
                raise ValidationError(
                    result.customer_message or "Data quality issue detected. Using reliable fallback.",
                    errors=result.errors,
                    details={"client": self.name, "endpoint": endpoint}
                )
            data = result.sanitized_data

        if method == "GET":
            self.cache.set(key, data, self.cache_ttl_seconds)
            self.stale_cache.set(key, data, self.stale_ttl_seconds)

        return TransportResponse(
            data=data,
            status_code=response.status_code,
            elapsed_ms=(self._clock() - started) * 1000
        )

    async def _send(self,
                    method: str,
                    url: str,
                    *,
                    params: Optional[Dict[str, Any]] = None,
                    json_body: Any = None) -> httpx.Response:
        """Issue one network attempt, normalising every failure to TransportError."""
        start = self._clock()
        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, params=params, json=json_body, headers=self._request_headers(url)),
                timeout=self.timeout_seconds
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            self._record_attempt(start, success=False, outcome="timeout")
            raise self._transport_error(None, exc) from exc
        except httpx.HTTPError as exc:
            self._record_attempt(start, success=False, outcome="network_error")
            raise self._transport_error(None, exc) from exc

        if not 200 <= response.status_code < 300:
            self._record_attempt(start, success=False, outcome=f"http_{response.status_code}")
            raise self._transport_error(response.status_code, None, response)

        if len(response.content) > self.max_response_bytes:
            self._record_attempt(start, success=False, outcome="oversized")
            self.logger.error("Upstream response too large", size=len(response.content), url=url)
            raise SecurityError("Response too large", details={"limit_bytes": self.max_response_bytes})

        self._record_attempt(start, success=True, outcome="success")
        return response

    def _recover(self, method: str, key: str, exc: TransportError, *, attempts: int) -> TransportResponse:
        """Serve the last-known-good payload or re-raise the sanitised error."""
        if method == "GET":
            stale = self.stale_cache.get(key)
            if stale is not None:
                self.logger.info(
                    "Serving cached data due to API error",
                    attempts=attempts,
                    status_code=exc.status_code
                )
                return TransportResponse(data=stale, from_cache=True, is_stale=True)

        self.logger.error(
            "Upstream request failed",
            attempts=attempts,
            status_code=exc.status_code,
            customer_impact="medium",
            business_impact="high"
        )
        raise exc

    def _transport_error(self,
                         status_code: Optional[int],
                         exc: Optional[Exception],
                         response: Optional[httpx.Response] = None) -> TransportError:
        retryable = status_code is None or 500 <= status_code < 600
        if self.customer_facing:
            return TransportError(
                customer_message_for(status_code),
                status_code=status_code,
                retryable=retryable,
                details={"client": self.name, "status_code": status_code}
            )

        details: Dict[str, Any] = {"client": self.name, "status_code": status_code}
        if exc is not None:
            details["error"] = f"{type(exc).__name__}: {exc}"
        if response is not None:
            details["body"] = response.text[:500]
        return TransportError(
            "API request failed",
            status_code=status_code,
            retryable=retryable,
            details=details
        )

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            self.logger.warning("Upstream returned non-JSON payload", client=self.name)
            raise ValidationError(
                "Invalid data format received",
                errors=["Response body is not valid JSON"],
                details={"client": self.name}
            ) from exc

    def _resolve_url(self, url: str) -> str:
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            raise SecurityError("Unauthorized domain", details={"client": self.name})
        # Anything carrying a scheme or host is absolute and goes to the allow-list as is
        if parsed.scheme or parsed.host:
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _check_domain(self, url: str) -> None:
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            raise SecurityError("Unauthorized domain", details={"client": self.name})

        host = (parsed.host or "").lower()
        allowed = parsed.scheme in ("http", "https") and any(
            host == domain or host.endswith(f".{domain}") for domain in self.trusted_domains
        )
        if not allowed:
            self.logger.error("Blocked request to untrusted domain", host=host, client=self.name)
            raise SecurityError("Unauthorized domain", details={"host": host})

    def _cache_key(self, method: str, url: str, params: Optional[Dict[str, Any]]) -> str:
        encoded = json.dumps(params or {}, sort_keys=True, default=str)
        return f"{method}:{url}:{encoded}"

    def _request_headers(self, url: str) -> Dict[str, str]:
        headers = {"X-Request-Time": str(int(time.time() * 1000))}
        parsed = httpx.URL(url)
        if self._api_key and parsed.scheme == "https" and "coingecko" in (parsed.host or ""):
            headers["x-cg-pro-api-key"] = self._api_key
        return headers

    def _record_attempt(self, start: float, *, success: bool, outcome: str) -> None:
        duration_ms = (self._clock() - start) * 1000
        self.metrics.record_request(duration_ms, success, now=time.time())
        if self._collector:
            self._collector.record_upstream_request(self.name, outcome, duration_ms / 1000)
        if success and duration_ms > SLOW_RESPONSE_MS and self.customer_facing:
            self.logger.warning("Slow customer-facing API response", client=self.name, duration_ms=round(duration_ms))

    def _record_cache_lookup(self, hit: bool) -> None:
        self.metrics.record_cache_lookup(hit)
        if self._collector:
            self._collector.record_cache_lookup(self.name, hit)

    def _release_inflight(self, key: str, task: "asyncio.Future[TransportResponse]") -> None:
        # Only the task that registered the key may remove it
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception as retrieved; awaiters already received it
            task.exception()
