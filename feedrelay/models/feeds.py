"""Core feed value types: articles, sources, per-feed results and errors.

``Article`` is an immutable value; it serializes to the camelCase shape used by
the persisted cache snapshot (``pubDate`` as ISO-8601).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorType(str, Enum):
    """Failure taxonomy shared by the pipeline, loader and error history."""

    NETWORK = "network_error"
    TIMEOUT = "timeout_error"
    PARSE = "parse_error"
    CORS = "cors_error"
    SECURITY = "security_validation_error"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown_error"

    @classmethod
    def coerce(cls, value: str | None) -> ErrorType:
        """Map a stored value (including legacy short names) onto the enum."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            pass
        legacy = {
            "timeout": cls.TIMEOUT,
            "network": cls.NETWORK,
            "parse": cls.PARSE,
            "cors": cls.CORS,
            "unknown": cls.UNKNOWN,
        }
        return legacy.get(value, cls.UNKNOWN)


@dataclass(frozen=True)
class Article:
    """A single normalized feed item."""

    title: str
    link: str
    pub_date: datetime
    description: str = ""
    source_title: str = ""
    content: str | None = None
    author: str | None = None
    categories: tuple[str, ...] = ()
    image_url: str | None = None
    audio_url: str | None = None
    audio_duration: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "link": self.link,
            "pubDate": self.pub_date.isoformat(),
            "description": self.description,
            "sourceTitle": self.source_title,
            "categories": list(self.categories),
        }
        for key, value in (
            ("content", self.content),
            ("author", self.author),
            ("imageUrl", self.image_url),
            ("audioUrl", self.audio_url),
            ("audioDuration", self.audio_duration),
        ):
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Article:
        pub_date = datetime.fromisoformat(str(data["pubDate"]).replace("Z", "+00:00"))
        if pub_date.tzinfo is None:
            pub_date = pub_date.replace(tzinfo=timezone.utc)
        return cls(
            title=data.get("title", ""),
            link=data.get("link", ""),
            pub_date=pub_date,
            description=data.get("description", ""),
            source_title=data.get("sourceTitle", ""),
            content=data.get("content"),
            author=data.get("author"),
            categories=tuple(data.get("categories") or ()),
            image_url=data.get("imageUrl"),
            audio_url=data.get("audioUrl"),
            audio_duration=data.get("audioDuration"),
        )


def sort_articles(articles: list[Article] | tuple[Article, ...]) -> list[Article]:
    """Newest first."""
    return sorted(articles, key=lambda a: a.pub_date, reverse=True)


class FeedSource(BaseModel):
    """A configured feed subscription."""

    url: str = Field(min_length=1)
    custom_title: str | None = None
    category_id: str | None = None


@dataclass(frozen=True)
class ParsedFeed:
    """Output of the fetch/parse pipeline for one feed URL."""

    title: str
    articles: tuple[Article, ...] = ()
    from_cache: bool = False
    stale: bool = False


@dataclass(frozen=True)
class FeedError:
    """A failure recorded against one feed during a load."""

    url: str
    error: str
    error_type: ErrorType
    timestamp: float
    feed_title: str | None = None


@dataclass(frozen=True)
class FeedResult:
    """Outcome of acquiring a single feed, keyed by its URL."""

    url: str
    success: bool
    articles: tuple[Article, ...] = ()
    title: str = ""
    error: str | None = None
    error_type: ErrorType | None = None
    from_cache: bool = False


@dataclass
class ErrorHistoryRecord:
    """Persisted failure counter for one feed URL."""

    url: str
    failures: int = 1
    last_error_at: float = 0.0
    last_error_type: ErrorType = ErrorType.UNKNOWN
