"""Proxy data models for the proxy registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote


class ResponseKind(str, Enum):
    """How a provider wraps the upstream feed in its response body."""

    RSS2JSON = "rss2json"  # JSON document with normalized items
    ALLORIGINS = "allorigins"  # JSON envelope, feed text under "contents"
    CODETABS = "codetabs"  # JSON envelope, feed text under "data" (or raw body)
    RAW = "raw"  # upstream body passed through unchanged

    @property
    def is_json_aggregator(self) -> bool:
        return self is ResponseKind.RSS2JSON


@dataclass
class ProxyEndpoint:
    """A forwarding service that fetches a target URL on our behalf.

    Everything except ``enabled`` is fixed after configuration.
    """

    name: str
    url_template: str
    timeout_seconds: float = 10.0
    priority: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    response_kind: ResponseKind = ResponseKind.RAW
    api_key_param: str | None = None
    api_key: str | None = None
    enabled: bool = True

    def build_url(self, target_url: str) -> str:
        """Template + URL-encoded target, plus the API key query parameter when configured."""
        url = self.url_template + quote(target_url, safe="")
        if self.api_key_param and self.api_key:
            url += f"&{self.api_key_param}={quote(self.api_key, safe='')}"
        return url


@dataclass
class ProxyHealth:
    """Mutable health counters for one endpoint."""

    success_count: int = 0
    failure_count: int = 0
    total_requests: int = 0
    avg_response_time_ms: float = 0.0
    last_success_at: float | None = None
    last_failure_at: float | None = None
    last_used_at: float | None = None
    consecutive_failures: int = 0
    is_healthy: bool = True
    health_score: float = 1.0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.success_count / self.total_requests


@dataclass(frozen=True)
class ProxyAttempt:
    """Audit record of a single request through an endpoint."""

    endpoint_name: str
    request_url: str
    target_url: str
    started_at: float
    success: bool
    response_time_ms: float
    error: str | None = None
    status_code: int | None = None

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint_name,
            "target_url": self.target_url,
            "started_at": self.started_at,
            "success": self.success,
            "response_time_ms": round(self.response_time_ms, 1),
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass(frozen=True)
class FailoverResult:
    """Content from the first endpoint that succeeded plus every attempt made."""

    content: str
    endpoint_used: str
    attempts: tuple[ProxyAttempt, ...] = ()
