"""Per-provider circuit breaker for the fetch pipeline.

Tracks failures per acquisition provider (a proxy endpoint name, or
``direct`` for direct fetches) using a sliding window and transitions through
closed → open → half-open states so a failing provider is skipped without
spending a request on it.

State machine:
- Closed → Open: failure count in sliding window reaches threshold
- Open → Half-Open: cooldown period elapses
- Half-Open → Closed: probe request succeeds
- Half-Open → Open: probe request fails

The breaker never raises; callers ask ``can_call`` and report outcomes.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class ProviderCircuit:
    """Internal state tracked per provider."""

    provider: str
    state: CircuitState = CircuitState.CLOSED
    recent_calls: deque[bool] = field(default_factory=deque)
    last_state_change: float = 0.0
    opened_count: int = 0


class ProviderCircuitBreaker:
    """Per-provider sliding window circuit breaker.

    Args:
        window_size: Maximum number of recent calls to track per provider.
        failure_threshold: Failures in the window that trigger the open state.
        cooldown_seconds: Seconds in open state before a half-open probe.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        window_size: int = 10,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_size = window_size
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._circuits: dict[str, ProviderCircuit] = {}

    def _get_or_create(self, provider: str) -> ProviderCircuit:
        if provider not in self._circuits:
            self._circuits[provider] = ProviderCircuit(
                provider=provider, last_state_change=self._clock()
            )
        return self._circuits[provider]

    def can_call(self, provider: str) -> bool:
        """Check whether a request through the provider is allowed.

        - Unknown/closed providers: always allowed.
        - Open providers: allowed only once cooldown has elapsed (→ half-open).
        - Half-open providers: allowed (probe request).
        """
        circuit = self._circuits.get(provider)
        if circuit is None or circuit.state == CircuitState.CLOSED:
            return True

        if circuit.state == CircuitState.OPEN:
            now = self._clock()
            if now - circuit.last_state_change >= self._cooldown_seconds:
                circuit.state = CircuitState.HALF_OPEN
                circuit.last_state_change = now
                return True
            return False

        return True

    def record_success(self, provider: str) -> None:
        """Record a successful request. A half-open probe success closes the circuit."""
        circuit = self._get_or_create(provider)

        if circuit.state == CircuitState.HALF_OPEN:
            circuit.state = CircuitState.CLOSED
            circuit.last_state_change = self._clock()
            circuit.recent_calls.clear()
            return

        self._append_call(circuit, success=True)

    def record_failure(self, provider: str) -> None:
        """Record a failed request; may open the circuit."""
        circuit = self._get_or_create(provider)
        now = self._clock()

        if circuit.state == CircuitState.HALF_OPEN:
            self._open(circuit, now)
            return

        self._append_call(circuit, success=False)

        if circuit.state == CircuitState.CLOSED:
            failures = sum(1 for ok in circuit.recent_calls if not ok)
            if failures >= self._failure_threshold:
                self._open(circuit, now)

    def reset(self, provider: str | None = None) -> None:
        """Forget state for one provider, or all of them."""
        if provider is None:
            self._circuits.clear()
        else:
            self._circuits.pop(provider, None)

    def get_state(self, provider: str) -> CircuitState:
        """Current state; CLOSED for unknown providers."""
        circuit = self._circuits.get(provider)
        return circuit.state if circuit else CircuitState.CLOSED

    def get_all_states(self) -> dict[str, CircuitState]:
        return {name: circuit.state for name, circuit in self._circuits.items()}

    def get_stats(self) -> dict:
        return {
            name: {
                "state": circuit.state.value,
                "recent_failures": sum(1 for ok in circuit.recent_calls if not ok),
                "times_opened": circuit.opened_count,
            }
            for name, circuit in self._circuits.items()
        }

    def _open(self, circuit: ProviderCircuit, now: float) -> None:
        circuit.state = CircuitState.OPEN
        circuit.last_state_change = now
        circuit.recent_calls.clear()
        circuit.opened_count += 1

    def _append_call(self, circuit: ProviderCircuit, *, success: bool) -> None:
        """Append a call result to the sliding window, trimming to window_size."""
        circuit.recent_calls.append(success)
        while len(circuit.recent_calls) > self._window_size:
            circuit.recent_calls.popleft()
