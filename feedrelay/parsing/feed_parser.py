"""Turn provider payloads into sanitized ``Article`` tuples.

One parser per payload variant: ``parse_xml_feed`` for RSS / Atom / RDF text
(secure structure check, then ``feedparser``) and ``parse_rss2json`` for the
aggregator's JSON items. ``parse_payload`` dispatches on the variant.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlparse

import feedparser

from feedrelay.middleware.error_handler import ParseError
from feedrelay.models.feeds import Article, ParsedFeed
from feedrelay.parsing.providers import FeedPayload, Rss2JsonPayload, XmlPayload
from feedrelay.parsing.sanitizer import (
    first_image_src,
    sanitize_author,
    sanitize_description,
    sanitize_html_content,
    sanitize_title,
    sanitize_url,
    strip_html,
    validate_media_url,
)
from feedrelay.parsing.secure_xml import DEFAULT_POLICY, XmlSecurityPolicy, parse_secure_xml

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_FEED = 50


def _fallback_title(feed_url: str) -> str:
    return urlparse(feed_url).hostname or feed_url


def _struct_to_datetime(value: Any) -> datetime | None:
    try:
        return datetime(*value[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _parse_date_string(value: str | None) -> datetime | None:
    if not value:
        return None
    value = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# XML (RSS / Atom / RDF)
# ---------------------------------------------------------------------------


def _entry_date(entry: Any) -> datetime:
    for name in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(name)
        if value:
            parsed = _struct_to_datetime(value)
            if parsed:
                return parsed
    return datetime.now(timezone.utc)


def _entry_image(entry: Any, base_url: str, content_html: str | None) -> str | None:
    for media in entry.get("media_content") or []:
        if media.get("medium") == "image" or "image" in (media.get("type") or ""):
            url = validate_media_url(media.get("url"), base_url)
            if url:
                return url
    for thumb in entry.get("media_thumbnail") or []:
        url = validate_media_url(thumb.get("url"), base_url)
        if url:
            return url
    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("image/"):
            url = validate_media_url(enclosure.get("href"), base_url)
            if url:
                return url
    return first_image_src(content_html, base_url) or first_image_src(
        entry.get("summary"), base_url
    )


def _entry_audio(entry: Any, base_url: str) -> str | None:
    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("audio/"):
            url = validate_media_url(enclosure.get("href"), base_url)
            if url:
                return url
    return None


def _entry_to_article(entry: Any, feed_url: str, source_title: str) -> Article | None:
    link = sanitize_url(entry.get("link"), feed_url) or ""
    title = sanitize_title(entry.get("title"))
    if not title and not link:
        return None

    raw_content = None
    if entry.get("content"):
        raw_content = entry["content"][0].get("value")
    content = sanitize_html_content(raw_content, link or feed_url)

    audio_url = _entry_audio(entry, feed_url)
    return Article(
        title=title or "Untitled",
        link=link,
        pub_date=_entry_date(entry),
        description=sanitize_description(entry.get("summary") or raw_content),
        source_title=source_title,
        content=content,
        author=sanitize_author(entry.get("author_detail") or entry.get("author")),
        categories=tuple(
            term for term in (strip_html(t.get("term")) for t in entry.get("tags") or []) if term
        ),
        image_url=_entry_image(entry, link or feed_url, raw_content),
        audio_url=audio_url,
        audio_duration=(strip_html(entry.get("itunes_duration")) or None) if audio_url else None,
    )


def parse_xml_feed(
    xml_text: str,
    feed_url: str,
    policy: XmlSecurityPolicy = DEFAULT_POLICY,
) -> ParsedFeed:
    """Securely parse RSS / Atom / RDF text.

    Raises:
        SecurityValidationError: blocked constructs in the raw XML.
        ParseError: malformed XML, wrong root, or no usable entries.
    """
    parse_secure_xml(xml_text, policy)

    parsed = feedparser.parse(xml_text.strip())
    if parsed.get("bozo") and not parsed.entries:
        raise ParseError(f"Feed XML could not be parsed: {parsed.get('bozo_exception')}")

    title = sanitize_title(parsed.feed.get("title")) or _fallback_title(feed_url)
    articles = []
    for entry in parsed.entries[:MAX_ITEMS_PER_FEED]:
        article = _entry_to_article(entry, feed_url, title)
        if article is not None:
            articles.append(article)

    logger.debug(
        "Parsed XML feed %s: %d articles",
        feed_url,
        len(articles),
        extra={"feed_url": feed_url, "articles_count": len(articles)},
    )
    return ParsedFeed(title=title, articles=tuple(articles))


# ---------------------------------------------------------------------------
# rss2json
# ---------------------------------------------------------------------------


def _text(item: dict, key: str) -> str | None:
    """Optional text field; aggregators occasionally emit numbers or objects here."""
    value = item.get(key)
    return value if isinstance(value, str) and value else None


def _string_field(item: dict, key: str) -> str | None:
    value = item.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ParseError(f"rss2json item field {key!r} is {type(value).__name__}, not text")


def _rss2json_item_to_article(item: dict, feed_url: str, source_title: str) -> Article | None:
    link = sanitize_url(_string_field(item, "link") or _string_field(item, "guid"), feed_url) or ""
    title = sanitize_title(_string_field(item, "title"))
    if not title and not link:
        return None

    raw_content = _text(item, "content")
    raw_description = _text(item, "description")
    enclosure = item.get("enclosure") if isinstance(item.get("enclosure"), dict) else {}
    enclosure_type = str(enclosure.get("type") or "")

    image_url = validate_media_url(_text(item, "thumbnail"), link or feed_url)
    if not image_url and enclosure_type.startswith("image/"):
        image_url = validate_media_url(_text(enclosure, "link"), link or feed_url)
    if not image_url:
        image_url = first_image_src(raw_content, link or feed_url) or first_image_src(
            raw_description, link or feed_url
        )

    audio_url = None
    if enclosure_type.startswith("audio/"):
        audio_url = validate_media_url(_text(enclosure, "link"), feed_url)
    duration = enclosure.get("duration")

    categories = item.get("categories") if isinstance(item.get("categories"), list) else []
    return Article(
        title=title or "Untitled",
        link=link,
        pub_date=_parse_date_string(_string_field(item, "pubDate")) or datetime.now(timezone.utc),
        description=sanitize_description(raw_description or raw_content),
        source_title=source_title,
        content=sanitize_html_content(raw_content, link or feed_url),
        author=sanitize_author(item.get("author")),
        categories=tuple(c for c in (strip_html(str(c)) for c in categories) if c),
        image_url=image_url,
        audio_url=audio_url,
        audio_duration=str(duration) if audio_url and duration else None,
    )


def parse_rss2json(payload: Rss2JsonPayload, feed_url: str) -> ParsedFeed:
    title = sanitize_title(payload.feed_title) or _fallback_title(feed_url)
    articles = []
    for item in payload.items[:MAX_ITEMS_PER_FEED]:
        if not isinstance(item, dict):
            continue
        article = _rss2json_item_to_article(item, feed_url, title)
        if article is not None:
            articles.append(article)
    return ParsedFeed(title=title, articles=tuple(articles))


def parse_payload(
    payload: FeedPayload,
    feed_url: str,
    policy: XmlSecurityPolicy = DEFAULT_POLICY,
) -> ParsedFeed:
    """Dispatch to the parser for the payload variant.

    Unexpected shapes inside a payload surface as ``ParseError`` so callers can
    move on to the next provider.
    """
    try:
        if isinstance(payload, Rss2JsonPayload):
            return parse_rss2json(payload, feed_url)
        if isinstance(payload, XmlPayload):
            return parse_xml_feed(payload.text, feed_url, policy)
    except (TypeError, AttributeError, ValueError, KeyError) as exc:
        raise ParseError(f"Malformed feed payload: {exc}") from exc
    raise ParseError(f"Unsupported payload type: {type(payload).__name__}")
