"""Health, readiness, and metrics endpoints.

- GET /health - service status with proxy and cache summaries
- GET /readiness - 200 only when a feed can be acquired (a healthy proxy or direct fetching)
- GET /metrics - operational metrics for proxies, circuits, cache and the loader
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Response

from feedrelay.models.responses import ApiResponse


def create_health_router(
    *,
    registry: Any = None,
    cache: Any = None,
    breaker: Any = None,
    loader: Any = None,
    direct_fetch_enabled: bool = False,
) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with proxy and cache summaries."""
        proxy_stats = registry.get_stats() if registry else {}
        cache_stats = cache.get_stats() if cache else {}

        return ApiResponse(
            success=True,
            data={
                "status": "healthy",
                "proxies": {
                    "total": proxy_stats.get("total", 0),
                    "healthy": proxy_stats.get("healthy", 0),
                },
                "cache": {
                    "entries": cache_stats.get("entries", 0),
                    "hit_rate": cache_stats.get("hit_rate", 0.0),
                },
                "loader": loader.state.status.value if loader else None,
            },
        ).model_dump()

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe - 200 iff a healthy proxy exists or direct fetching is on."""
        proxy_stats = registry.get_stats() if registry else {"healthy": 0}
        proxy_healthy = proxy_stats.get("healthy", 0)

        is_ready = proxy_healthy > 0 or direct_fetch_enabled

        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={
                "ready": is_ready,
                "proxy_healthy": proxy_healthy,
                "direct_fetch_enabled": direct_fetch_enabled,
            },
            error=None if is_ready else "Service not ready",
        ).model_dump()

    @health_router.get("/metrics")
    async def metrics() -> dict:
        """Operational metrics endpoint."""
        return ApiResponse(
            success=True,
            data={
                "proxies": registry.get_stats() if registry else {},
                "circuits": breaker.get_stats() if breaker else {},
                "cache": cache.get_stats() if cache else {},
                "loader": loader.state.to_dict() if loader else {},
            },
        ).model_dump()

    return health_router
