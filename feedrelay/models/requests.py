"""Pydantic request bodies for the feed and proxy endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoadRequest(BaseModel):
    """Start a progressive load of every configured feed."""

    force_refresh: bool = False
    priority_category_id: str | None = None
    wait: bool = False


class RetrySelectedRequest(BaseModel):
    """Retry a subset of the configured feeds."""

    urls: list[str] = Field(..., min_length=1, max_length=500)
    wait: bool = False


class ProbeRequest(BaseModel):
    """Run proxy failover for one target URL and report every attempt."""

    url: str = Field(..., min_length=1)
