"""API response envelope and JSON views of domain objects.

Every response is wrapped in the same envelope:
{ success: bool, data: T | None, error: str | None, meta: dict | None }
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from feedrelay.models.feeds import Article, FeedResult

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for all API responses."""

    success: bool
    data: T | None = None
    error: str | None = None
    meta: dict | None = None


def article_view(article: Article) -> dict[str, Any]:
    return article.to_dict()


def feed_result_view(result: FeedResult, *, include_articles: bool = False) -> dict[str, Any]:
    view: dict[str, Any] = {
        "url": result.url,
        "success": result.success,
        "title": result.title,
        "articleCount": len(result.articles),
        "fromCache": result.from_cache,
        "error": result.error,
        "errorType": result.error_type.value if result.error_type else None,
    }
    if include_articles:
        view["articles"] = [article_view(a) for a in result.articles]
    return view
