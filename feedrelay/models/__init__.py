"""Public models for the feed relay service."""

from feedrelay.models.feeds import (
    Article,
    ErrorHistoryRecord,
    ErrorType,
    FeedError,
    FeedResult,
    FeedSource,
    ParsedFeed,
    sort_articles,
)
from feedrelay.models.requests import LoadRequest, ProbeRequest, RetrySelectedRequest
from feedrelay.models.responses import ApiResponse, article_view, feed_result_view
from feedrelay.models.state import LoadingState, LoadStatus

__all__ = [
    "ApiResponse",
    "Article",
    "ErrorHistoryRecord",
    "ErrorType",
    "FeedError",
    "FeedResult",
    "FeedSource",
    "LoadRequest",
    "LoadStatus",
    "LoadingState",
    "ParsedFeed",
    "ProbeRequest",
    "RetrySelectedRequest",
    "article_view",
    "feed_result_view",
    "sort_articles",
]
