"""Resilience components for the feed relay service."""

from feedrelay.resilience.circuit_breaker import CircuitState, ProviderCircuitBreaker

__all__ = ["CircuitState", "ProviderCircuitBreaker"]
