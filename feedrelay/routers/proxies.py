"""Proxy administration endpoints.

- GET  /api/v1/proxies - endpoint health, preferred endpoints and circuit states
- POST /api/v1/proxies/{name}/enable - re-enable an endpoint (resets its failure streak)
- POST /api/v1/proxies/{name}/disable - take an endpoint out of rotation
- POST /api/v1/proxies/probe - run failover for one URL and report every attempt
- POST /api/v1/proxies/reset - clear health statistics and circuit breakers
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from feedrelay.middleware.error_handler import ValidationError
from feedrelay.models.requests import ProbeRequest
from feedrelay.models.responses import ApiResponse
from feedrelay.validators.url_validator import is_valid_feed_url

logger = logging.getLogger(__name__)


def create_proxies_router(*, registry: Any, breaker: Any = None) -> APIRouter:
    """Factory that creates the proxies router with injected dependencies."""

    proxies_router = APIRouter(prefix="/api/v1/proxies", tags=["proxies"])

    def _endpoint_view(name: str) -> dict:
        endpoint = registry.get(name)
        health = registry.get_health(name)
        return {
            "name": endpoint.name,
            "enabled": endpoint.enabled,
            "priority": endpoint.priority,
            "is_healthy": health.is_healthy,
            "health_score": round(health.health_score, 3),
            "consecutive_failures": health.consecutive_failures,
        }

    @proxies_router.get("")
    async def list_proxies() -> dict:
        circuits = breaker.get_stats() if breaker else {}
        return ApiResponse(
            success=True,
            data=registry.get_stats(),
            meta={"circuits": circuits},
        ).model_dump()

    @proxies_router.post("/probe")
    async def probe(body: ProbeRequest) -> dict:
        """Run failover for ``url``; failures come back through the error envelope."""
        if not is_valid_feed_url(body.url):
            raise ValidationError("Invalid feed URL", url=body.url)

        result = await registry.failover(body.url)
        return ApiResponse(
            success=True,
            data={
                "endpoint_used": result.endpoint_used,
                "content_length": len(result.content),
                "attempts": [a.to_dict() for a in result.attempts],
            },
        ).model_dump()

    @proxies_router.post("/reset")
    async def reset() -> dict:
        registry.reset_stats()
        if breaker is not None:
            breaker.reset()
        logger.info("Proxy statistics and circuits reset")
        return ApiResponse(success=True, data=registry.get_stats()).model_dump()

    @proxies_router.post("/{name}/enable")
    async def enable(name: str) -> dict:
        registry.enable(name)
        return ApiResponse(success=True, data=_endpoint_view(name)).model_dump()

    @proxies_router.post("/{name}/disable")
    async def disable(name: str) -> dict:
        registry.disable(name)
        return ApiResponse(success=True, data=_endpoint_view(name)).model_dump()

    return proxies_router
