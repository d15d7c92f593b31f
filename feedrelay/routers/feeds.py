"""Feed loading endpoints.

- POST /api/v1/feeds/load - start a progressive load (optionally wait for it)
- POST /api/v1/feeds/retry-failed - retry every feed that failed last run
- POST /api/v1/feeds/retry-selected - retry the given feed URLs
- POST /api/v1/feeds/cancel - cancel the running load
- GET  /api/v1/feeds/state - current loading state
- GET  /api/v1/feeds/articles - merged article list, newest first
- GET  /api/v1/feeds/results - per-feed outcomes of the last run
- GET  /api/v1/feeds/sources - configured feed sources
- GET  /api/v1/feeds/error-history - persisted per-feed failure history
- GET  /api/v1/feeds/fetch - fetch a single feed through the pipeline
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

from fastapi import APIRouter, Query

from feedrelay.middleware.error_handler import ValidationError
from feedrelay.models.requests import LoadRequest, RetrySelectedRequest
from feedrelay.models.responses import ApiResponse, article_view, feed_result_view
from feedrelay.validators.url_validator import is_valid_feed_url

logger = logging.getLogger(__name__)


def create_feeds_router(
    *,
    loader: Any,
    pipeline: Any = None,
    error_history: Any = None,
) -> APIRouter:
    """Factory that creates the feeds router with injected dependencies.

    Parameters
    ----------
    loader:
        ProgressiveFeedLoader owning the load runs and their state.
    pipeline:
        FeedPipeline used by the single-feed fetch endpoint.
    error_history:
        ErrorHistoryStore exposed read-only.
    """
    feeds_router = APIRouter(prefix="/api/v1/feeds", tags=["feeds"])
    background: set[asyncio.Task] = set()

    def _spawn(coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        background.add(task)
        task.add_done_callback(background.discard)

    def _state_response(meta: dict | None = None) -> dict:
        return ApiResponse(success=True, data=loader.state.to_dict(), meta=meta).model_dump()

    @feeds_router.post("/load")
    async def load(body: LoadRequest) -> dict:
        """Start a load. With ``wait`` the response carries the final state."""
        if body.wait:
            await loader.load(
                force_refresh=body.force_refresh,
                priority_category_id=body.priority_category_id,
            )
            return _state_response({"article_count": len(loader.articles)})

        _spawn(
            loader.load(
                force_refresh=body.force_refresh,
                priority_category_id=body.priority_category_id,
            )
        )
        return _state_response({"started": True})

    @feeds_router.post("/retry-failed")
    async def retry_failed(wait: bool = Query(default=False)) -> dict:
        if wait:
            await loader.retry_failed_feeds()
            return _state_response()
        _spawn(loader.retry_failed_feeds())
        return _state_response({"started": True})

    @feeds_router.post("/retry-selected")
    async def retry_selected(body: RetrySelectedRequest) -> dict:
        if body.wait:
            await loader.retry_selected_feeds(body.urls)
            return _state_response()

        known = {s.url for s in loader.sources}
        unknown = [u for u in body.urls if u not in known]
        if unknown:
            # surface unknown URLs now rather than from the background task
            await loader.retry_selected_feeds(unknown)
        _spawn(loader.retry_selected_feeds(body.urls))
        return _state_response({"started": True})

    @feeds_router.post("/cancel")
    async def cancel() -> dict:
        loader.cancel_loading()
        return _state_response()

    @feeds_router.get("/state")
    async def state() -> dict:
        return _state_response()

    @feeds_router.get("/articles")
    async def articles(
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> dict:
        all_articles = loader.articles
        page = all_articles[offset : offset + limit]
        return ApiResponse(
            success=True,
            data=[article_view(a) for a in page],
            meta={"total": len(all_articles), "limit": limit, "offset": offset},
        ).model_dump()

    @feeds_router.get("/results")
    async def results(include_articles: bool = Query(default=False)) -> dict:
        return ApiResponse(
            success=True,
            data=[
                feed_result_view(r, include_articles=include_articles)
                for r in loader.feed_results.values()
            ],
        ).model_dump()

    @feeds_router.get("/sources")
    async def sources() -> dict:
        return ApiResponse(
            success=True,
            data=[s.model_dump() for s in loader.sources],
        ).model_dump()

    @feeds_router.get("/error-history")
    async def error_history_list() -> dict:
        data = error_history.to_list() if error_history is not None else []
        return ApiResponse(success=True, data=data).model_dump()

    @feeds_router.get("/fetch")
    async def fetch(
        url: str = Query(..., min_length=1),
        skip_cache: bool = Query(default=False),
    ) -> dict:
        """Fetch and parse one feed, returning its articles."""
        if pipeline is None:
            raise ValidationError("Single-feed fetch is not available")
        if not is_valid_feed_url(url):
            raise ValidationError("Invalid feed URL", url=url)

        parsed = await pipeline.fetch(url, skip_cache=skip_cache)
        return ApiResponse(
            success=True,
            data={
                "url": url,
                "title": parsed.title,
                "articles": [article_view(a) for a in parsed.articles],
            },
            meta={"from_cache": parsed.from_cache, "stale": parsed.stale},
        ).model_dump()

    return feeds_router
