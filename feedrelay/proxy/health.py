"""Health scoring and recovery for proxy endpoints.

An endpoint becomes unhealthy after ``failure_threshold`` consecutive
failures and is re-admitted by the recovery sweep once its last failure is
older than the recovery window. The health score used for ordering is::

    success_rate × streak_factor × latency_factor   (clamped to [0, 1])

Latency is averaged over successful responses only, so a run of failures can
never raise the score.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from feedrelay.proxy.types import ProxyHealth

logger = logging.getLogger(__name__)

SLOW_RESPONSE_MS = 5000.0
SLOW_RESPONSE_SPAN_MS = 10000.0


def compute_health_score(health: ProxyHealth, failure_threshold: int) -> float:
    """Score an endpoint from its counters."""
    score = health.success_rate

    streak = health.consecutive_failures
    if streak >= failure_threshold:
        score *= 0.1
    elif streak > 0:
        score *= 1 - 0.4 * (streak / failure_threshold)

    if health.avg_response_time_ms > SLOW_RESPONSE_MS:
        over = (health.avg_response_time_ms - SLOW_RESPONSE_MS) / SLOW_RESPONSE_SPAN_MS
        score *= 1 - 0.1 * min(over, 1.0)

    return max(0.0, min(1.0, score))


class HealthTracker:
    """Owns the ``ProxyHealth`` record of every registered endpoint.

    Args:
        failure_threshold: Consecutive failures that mark an endpoint unhealthy.
        recovery_seconds: Quiet period after the last failure before recovery.
        clock: Wall-clock time source (epoch seconds).
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_seconds = recovery_seconds
        self._clock = clock
        self._records: dict[str, ProxyHealth] = {}

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    def get(self, name: str) -> ProxyHealth:
        if name not in self._records:
            self._records[name] = ProxyHealth()
        return self._records[name]

    def record(self, name: str, *, success: bool, response_time_ms: float) -> ProxyHealth:
        """Fold one attempt into the endpoint's counters and rescore it."""
        health = self.get(name)
        now = self._clock()
        health.total_requests += 1
        health.last_used_at = now

        if success:
            health.success_count += 1
            health.consecutive_failures = 0
            health.last_success_at = now
            health.is_healthy = True
            # running mean over successful responses
            health.avg_response_time_ms += (
                response_time_ms - health.avg_response_time_ms
            ) / health.success_count
        else:
            health.failure_count += 1
            health.consecutive_failures += 1
            health.last_failure_at = now
            if health.consecutive_failures >= self._failure_threshold and health.is_healthy:
                health.is_healthy = False
                logger.warning(
                    "Proxy marked unhealthy: %s (%d consecutive failures)",
                    name,
                    health.consecutive_failures,
                    extra={"provider": name},
                )

        health.health_score = compute_health_score(health, self._failure_threshold)
        return health

    def recover_expired(self, names: list[str] | None = None) -> list[str]:
        """Re-admit unhealthy endpoints whose last failure is past the recovery window."""
        now = self._clock()
        recovered: list[str] = []
        for name in names if names is not None else list(self._records):
            health = self.get(name)
            if health.is_healthy:
                continue
            last_failure = health.last_failure_at or 0.0
            if now - last_failure > self._recovery_seconds:
                health.consecutive_failures = 0
                health.is_healthy = True
                health.health_score = compute_health_score(health, self._failure_threshold)
                recovered.append(name)
                logger.info("Proxy recovered after cooldown: %s", name, extra={"provider": name})
        return recovered

    def reset(self, name: str | None = None) -> None:
        """Drop counters for one endpoint, or all of them."""
        if name is None:
            self._records.clear()
        else:
            self._records.pop(name, None)

    def clear_streak(self, name: str) -> None:
        health = self.get(name)
        health.consecutive_failures = 0
        health.is_healthy = True
        health.health_score = compute_health_score(health, self._failure_threshold)
