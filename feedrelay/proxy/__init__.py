"""Proxy registry: endpoints, health scoring and failover."""

from feedrelay.proxy.health import HealthTracker, compute_health_score
from feedrelay.proxy.preferred import PreferredProxyStore
from feedrelay.proxy.registry import ProxyRegistry
from feedrelay.proxy.types import (
    FailoverResult,
    ProxyAttempt,
    ProxyEndpoint,
    ProxyHealth,
    ResponseKind,
)

__all__ = [
    "FailoverResult",
    "HealthTracker",
    "PreferredProxyStore",
    "ProxyAttempt",
    "ProxyEndpoint",
    "ProxyHealth",
    "ProxyRegistry",
    "ResponseKind",
    "compute_health_score",
]
