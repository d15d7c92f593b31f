"""Proxy registry with health-ordered candidates, failover and a preferred endpoint per host.

Endpoints come from configuration (see ``feedrelay.config.proxy_endpoints``).
``candidates`` orders the enabled, healthy endpoints by health score, falling
back to configured priority when scores are within 0.1 of each other, and
moves the endpoint that last worked for the target host to the front.
``failover`` walks that list until one endpoint returns a valid payload and
reports every attempt it made. A background loop periodically re-admits
endpoints whose failure streak is older than the recovery window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import cmp_to_key
from typing import Callable

import httpx

from feedrelay.middleware.error_handler import (
    AllProvidersFailedError,
    FeedFetchError,
    FeedNotFoundError,
    FeedTimeoutError,
    NetworkError,
    NoHealthyProxiesError,
    ProxyNotFoundError,
    classify_error,
)
from feedrelay.parsing.providers import unwrap_response, validate_payload
from feedrelay.proxy.health import HealthTracker
from feedrelay.proxy.preferred import PreferredProxyStore
from feedrelay.proxy.types import FailoverResult, ProxyAttempt, ProxyEndpoint, ProxyHealth

logger = logging.getLogger(__name__)

SCORE_TIE_MARGIN = 0.1


class ProxyRegistry:
    """Owns the configured proxy endpoints and their health."""

    def __init__(
        self,
        endpoints: list[ProxyEndpoint],
        *,
        http_client: httpx.AsyncClient,
        health: HealthTracker | None = None,
        preferred: PreferredProxyStore | None = None,
        max_response_bytes: int = 10 * 1024 * 1024,
        health_check_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._endpoints: dict[str, ProxyEndpoint] = {}
        for endpoint in endpoints:
            self._endpoints[endpoint.name] = endpoint
        self._client = http_client
        self._health = health or HealthTracker(clock=clock)
        self._preferred = preferred or PreferredProxyStore(clock=clock)
        self._max_response_bytes = max_response_bytes
        self._health_check_interval_seconds = health_check_interval_seconds
        self._clock = clock
        self._sweep_task: asyncio.Task[None] | None = None

        logger.info("Proxy registry initialized with %d endpoints", len(self._endpoints))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def endpoints(self) -> list[ProxyEndpoint]:
        return list(self._endpoints.values())

    def get(self, name: str) -> ProxyEndpoint:
        try:
            return self._endpoints[name]
        except KeyError:
            raise ProxyNotFoundError(f"Unknown proxy endpoint: {name}") from None

    def get_health(self, name: str) -> ProxyHealth:
        self.get(name)
        return self._health.get(name)

    def preferred_for(self, target_url: str) -> str | None:
        return self._preferred.get(target_url)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _compare(self, a: ProxyEndpoint, b: ProxyEndpoint) -> int:
        score_a = self._health.get(a.name).health_score
        score_b = self._health.get(b.name).health_score
        if abs(score_a - score_b) > SCORE_TIE_MARGIN:
            return -1 if score_a > score_b else 1
        return a.priority - b.priority

    def candidates(self, target_url: str) -> list[ProxyEndpoint]:
        """Enabled, healthy endpoints in the order they should be tried for ``target_url``."""
        enabled = [e for e in self._endpoints.values() if e.enabled]
        self._health.recover_expired([e.name for e in enabled])

        pool = [e for e in enabled if self._health.get(e.name).is_healthy]
        ordered = sorted(pool, key=cmp_to_key(self._compare))

        preferred = self._preferred.get(target_url)
        if preferred:
            for index, endpoint in enumerate(ordered):
                if endpoint.name == preferred:
                    ordered.insert(0, ordered.pop(index))
                    break
        return ordered

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _attempt(
        self, endpoint: ProxyEndpoint, target_url: str
    ) -> tuple[ProxyAttempt, str | None, FeedFetchError | None]:
        request_url = endpoint.build_url(target_url)
        started_at = self._clock()
        t0 = time.perf_counter()
        status_code: int | None = None
        content: str | None = None
        error: FeedFetchError | None = None

        try:
            response = await self._client.get(
                request_url,
                headers=endpoint.headers,
                timeout=endpoint.timeout_seconds,
                follow_redirects=True,
            )
            status_code = response.status_code
            if status_code in (404, 410):
                raise FeedNotFoundError(f"{endpoint.name} returned HTTP {status_code}")
            if status_code >= 400:
                raise NetworkError(f"{endpoint.name} returned HTTP {status_code}")
            content = validate_payload(
                unwrap_response(endpoint.response_kind, response.text),
                self._max_response_bytes,
            )
        except httpx.TimeoutException as exc:
            error = FeedTimeoutError(
                f"{endpoint.name} timed out after {endpoint.timeout_seconds}s: {exc}"
            )
        except httpx.HTTPError as exc:
            error = NetworkError(f"{endpoint.name} network error: {exc}")
        except FeedFetchError as exc:
            error = exc

        elapsed_ms = (time.perf_counter() - t0) * 1000
        success = error is None
        self._health.record(endpoint.name, success=success, response_time_ms=elapsed_ms)

        if success:
            self._preferred.remember(target_url, endpoint.name)
        else:
            self._preferred.forget(target_url, endpoint.name)
            logger.info(
                "Proxy attempt failed: %s",
                error.message,
                extra={
                    "provider": endpoint.name,
                    "feed_url": target_url,
                    "error_type": error.error_type.value,
                    "duration_ms": round(elapsed_ms, 1),
                },
            )

        attempt = ProxyAttempt(
            endpoint_name=endpoint.name,
            request_url=request_url,
            target_url=target_url,
            started_at=started_at,
            success=success,
            response_time_ms=elapsed_ms,
            error=None if error is None else error.message,
            status_code=status_code,
        )
        return attempt, content, error

    async def fetch(self, endpoint: ProxyEndpoint, target_url: str) -> str:
        """Fetch ``target_url`` through one endpoint and return the validated feed text.

        Raises the typed ``FeedFetchError`` describing the failure.
        """
        _attempt, content, error = await self._attempt(endpoint, target_url)
        if error is not None:
            raise error
        return content  # type: ignore[return-value]

    async def failover(self, target_url: str) -> FailoverResult:
        """Try candidates in order until one succeeds.

        Raises:
            NoHealthyProxiesError: no endpoint is currently eligible.
            AllProvidersFailedError: every candidate failed; carries the last
                failure's message and the attempts audit trail.
        """
        candidates = self.candidates(target_url)
        if not candidates:
            raise NoHealthyProxiesError()

        attempts: list[ProxyAttempt] = []
        last_error: FeedFetchError | None = None
        for endpoint in candidates:
            attempt, content, error = await self._attempt(endpoint, target_url)
            attempts.append(attempt)
            if error is None:
                return FailoverResult(
                    content=content or "",
                    endpoint_used=endpoint.name,
                    attempts=tuple(attempts),
                )
            last_error = error

        message = last_error.message if last_error else "unknown error"
        raise AllProvidersFailedError(
            f"All proxies failed. Last error: {message}",
            error_type=classify_error(last_error) if last_error else classify_error(message),
            attempts=[a.to_dict() for a in attempts],
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def enable(self, name: str) -> ProxyEndpoint:
        endpoint = self.get(name)
        endpoint.enabled = True
        self._health.clear_streak(name)
        logger.info("Proxy enabled: %s", name, extra={"provider": name})
        return endpoint

    def disable(self, name: str) -> ProxyEndpoint:
        endpoint = self.get(name)
        endpoint.enabled = False
        logger.info("Proxy disabled: %s", name, extra={"provider": name})
        return endpoint

    def reset_stats(self) -> None:
        self._health.reset()

    # ------------------------------------------------------------------
    # Background recovery
    # ------------------------------------------------------------------

    def recover(self) -> list[str]:
        """Run one recovery sweep over the enabled endpoints."""
        return self._health.recover_expired(
            [e.name for e in self._endpoints.values() if e.enabled]
        )

    async def health_check_loop(self) -> None:
        """Run ``recover`` every ``health_check_interval_seconds``."""
        while True:
            await asyncio.sleep(self._health_check_interval_seconds)
            recovered = self.recover()
            if recovered:
                logger.info("Recovery sweep re-admitted %d proxies", len(recovered))

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self.health_check_loop())

    async def shutdown(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    # ------------------------------------------------------------------
    # Stats / metrics
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Return proxy statistics for the health endpoint."""
        per_proxy = []
        total_requests = 0
        total_successes = 0
        for endpoint in self._endpoints.values():
            health = self._health.get(endpoint.name)
            total_requests += health.total_requests
            total_successes += health.success_count
            per_proxy.append(
                {
                    "name": endpoint.name,
                    "priority": endpoint.priority,
                    "enabled": endpoint.enabled,
                    "response_kind": endpoint.response_kind.value,
                    "is_healthy": health.is_healthy,
                    "health_score": round(health.health_score, 3),
                    "success_count": health.success_count,
                    "failure_count": health.failure_count,
                    "total_requests": health.total_requests,
                    "consecutive_failures": health.consecutive_failures,
                    "avg_response_time_ms": round(health.avg_response_time_ms, 1),
                    "last_success_at": health.last_success_at,
                    "last_failure_at": health.last_failure_at,
                }
            )

        enabled = [p for p in per_proxy if p["enabled"]]
        healthy = sum(1 for p in enabled if p["is_healthy"])
        return {
            "total": len(per_proxy),
            "enabled": len(enabled),
            "healthy": healthy,
            "unhealthy": len(enabled) - healthy,
            "total_requests": total_requests,
            "success_rate": (total_successes / total_requests) if total_requests else 1.0,
            "preferred": self._preferred.snapshot(),
            "proxies": per_proxy,
        }
