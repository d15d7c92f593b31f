"""Provider response envelopes and the feed payload union.

Each proxy provider wraps the upstream feed differently. ``unwrap_response``
strips the envelope by provider identity (``ResponseKind``), and
``validate_payload`` rejects anything that is not plausibly a feed before it
reaches a parser. ``decode_payload`` then yields one of two payload variants:

- ``Rss2JsonPayload``: items already normalized to JSON by an aggregator,
- ``XmlPayload``: raw RSS / Atom / RDF text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from feedrelay.middleware.error_handler import (
    FeedNotFoundError,
    NetworkError,
    ParseError,
    SecurityValidationError,
)
from feedrelay.proxy.types import ResponseKind


@dataclass(frozen=True)
class Rss2JsonPayload:
    feed_title: str
    feed_link: str
    items: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class XmlPayload:
    text: str


FeedPayload = Union[Rss2JsonPayload, XmlPayload]


def _load_json(body: str, provider: str) -> Any:
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{provider} returned invalid JSON: {exc.msg}") from exc


def unwrap_response(kind: ResponseKind, body: str) -> str:
    """Return the feed text carried in a provider response body."""
    if kind is ResponseKind.ALLORIGINS:
        data = _load_json(body, "AllOrigins")
        if not isinstance(data, dict):
            raise ParseError("AllOrigins returned an unexpected response shape")
        status = data.get("status") or {}
        http_code = status.get("http_code") if isinstance(status, dict) else None
        if http_code in (404, 410):
            raise FeedNotFoundError(f"Upstream returned HTTP {http_code}")
        if isinstance(http_code, int) and http_code >= 400:
            raise NetworkError(f"Upstream returned HTTP {http_code}")
        contents = data.get("contents")
        if not contents or not isinstance(contents, str):
            raise ParseError("AllOrigins returned no contents")
        return contents

    if kind is ResponseKind.CODETABS:
        stripped = body.lstrip()
        if stripped.startswith("{"):
            data = _load_json(stripped, "CodeTabs")
            if isinstance(data, dict) and isinstance(data.get("data"), str):
                return data["data"]
            if isinstance(data, dict) and data.get("Error"):
                raise NetworkError(f"CodeTabs error: {data['Error']}")
        return body

    if kind is ResponseKind.RSS2JSON:
        data = _load_json(body, "rss2json")
        if not isinstance(data, dict):
            raise ParseError("rss2json returned an unexpected response shape")
        if data.get("status") != "ok":
            message = str(data.get("message") or "rss2json reported an error")
            if "not found" in message.lower() or "404" in message:
                raise FeedNotFoundError(message)
            raise ParseError(message)
        return body

    return body


def validate_payload(text: str, max_bytes: int) -> str:
    """Reject empty, oversized, HTML, script, and non-XML/JSON payloads."""
    if not text or not text.strip():
        raise ParseError("Empty response body")
    if len(text.encode("utf-8")) > max_bytes:
        raise SecurityValidationError(f"Response exceeds {max_bytes} bytes")

    head = text.lstrip("\ufeff \t\r\n")[:512].lower()
    if head.startswith("<!doctype html") or head.startswith("<html"):
        raise ParseError("Received an HTML page instead of a feed")
    if head.startswith("<script"):
        raise SecurityValidationError("Response is a script payload")
    if not (head.startswith("<") or head.startswith("{")):
        raise ParseError("Response does not look like XML or JSON")
    return text


def decode_payload(kind: ResponseKind, content: str) -> FeedPayload:
    """Pick the payload variant for a validated provider response."""
    stripped = content.lstrip("\ufeff \t\r\n")
    if kind is ResponseKind.RSS2JSON or stripped.startswith("{"):
        data = _load_json(stripped, kind.value)
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ParseError("JSON response carries no feed items")
        feed = data.get("feed") if isinstance(data.get("feed"), dict) else {}
        return Rss2JsonPayload(
            feed_title=str(feed.get("title") or ""),
            feed_link=str(feed.get("link") or ""),
            items=[item for item in data["items"] if isinstance(item, dict)],
        )
    return XmlPayload(text=content)
