"""Text, HTML and URL sanitization for feed content.

Everything that leaves the parser passes through here. Titles, authors and
descriptions become plain text; article content keeps a small allow-list of
formatting tags with scrubbed attributes.
"""

from __future__ import annotations

import re
from html import unescape
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

DESCRIPTION_MAX_LENGTH = 500
TITLE_MAX_LENGTH = 300
AUTHOR_MAX_LENGTH = 200

# Removed together with everything inside them
_DROP_WITH_CONTENT = ["script", "style", "iframe", "noscript", "object", "embed", "form", "frame", "frameset"]

_ALLOWED_TAGS = frozenset(
    {
        "p", "br", "b", "i", "em", "strong", "u", "a", "img",
        "h1", "h2", "h3", "h4", "h5", "h6",
        "ul", "ol", "li", "blockquote", "code", "pre", "span", "div",
        "table", "thead", "tbody", "tr", "th", "td",
        "figure", "figcaption",
    }
)

_ALLOWED_ATTRS = frozenset(
    {"href", "src", "alt", "title", "class", "target", "rel", "width", "height"}
)

_URL_ATTRS = frozenset({"href", "src"})

_DANGEROUS_SCHEMES = re.compile(r"(?:javascript|vbscript|livescript)\s*:|data\s*:\s*text/html", re.IGNORECASE)
_CSS_EXPRESSION = re.compile(r"expression\s*\(", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")

_PLACEHOLDER_GIF = re.compile(r"blank[^/]*\.gif", re.IGNORECASE)


def _soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(_DROP_WITH_CONTENT):
        element.decompose()
    return soup


def strip_html(text: str | None) -> str:
    """Reduce markup to plain text with collapsed whitespace.

    Entities are decoded before parsing so double-encoded markup
    (``&lt;script&gt;``) is stripped as markup rather than surviving as text.
    """
    if not text:
        return ""
    decoded = unescape(text)
    plain = _soup(decoded).get_text(" ") if "<" in decoded else decoded
    plain = _DANGEROUS_SCHEMES.sub("", plain)
    plain = _CSS_EXPRESSION.sub("", plain)
    plain = _CONTROL_CHARS.sub("", plain.replace("\xa0", " "))
    return _WHITESPACE.sub(" ", plain).strip()


def truncate(text: str, max_length: int) -> str:
    """Cut at the last word boundary before ``max_length`` and append an ellipsis."""
    if len(text) <= max_length:
        return text
    cut = text[: max_length - 3]
    space = cut.rfind(" ")
    if space > max_length // 2:
        cut = cut[:space]
    return cut.rstrip(" ,;:.") + "..."


def sanitize_title(text: str | None) -> str:
    return truncate(strip_html(text), TITLE_MAX_LENGTH)


def sanitize_author(author: str | dict | None) -> str | None:
    if isinstance(author, dict):
        author = author.get("name") or author.get("email")
    cleaned = strip_html(str(author)) if author else ""
    cleaned = re.sub(r"^(by|posted by)\s+", "", cleaned, flags=re.IGNORECASE)
    return truncate(cleaned, AUTHOR_MAX_LENGTH) or None


def sanitize_description(text: str | None, max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    return truncate(strip_html(text), max_length)


def sanitize_url(url: str | None, base_url: str | None = None) -> str | None:
    """Return an absolute http(s) URL or None.

    Protocol-relative URLs are upgraded to https; relative URLs are resolved
    against ``base_url`` when one is given.
    """
    if not url:
        return None
    url = url.strip()
    if not url or url.startswith("#") or _DANGEROUS_SCHEMES.match(url):
        return None
    lowered = url.lower()
    if lowered.startswith(("data:", "mailto:", "javascript:")):
        return None
    if url.startswith("//"):
        url = "https:" + url
    elif not lowered.startswith(("http://", "https://")):
        if not base_url:
            return None
        url = urljoin(base_url, url)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return url


def validate_media_url(url: str | None, base_url: str | None = None) -> str | None:
    """Sanitize an image/audio URL and reject known placeholder images."""
    cleaned = sanitize_url(url, base_url)
    if cleaned is None:
        return None
    lowered = cleaned.lower()
    if "?text=" in lowered:
        return None
    if "placeholder" in lowered and "image" not in lowered:
        return None
    if _PLACEHOLDER_GIF.search(lowered):
        return None
    return cleaned


def sanitize_html_content(html: str | None, base_url: str | None = None) -> str | None:
    """Keep allow-listed formatting tags; unwrap everything else."""
    if not html or not html.strip():
        return None
    soup = _soup(html)
    for tag in soup.find_all(True):
        if tag.name not in _ALLOWED_TAGS:
            tag.unwrap()
            continue
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr not in _ALLOWED_ATTRS:
                del tag.attrs[attr]
            elif attr in _URL_ATTRS:
                safe = sanitize_url(str(value), base_url)
                if safe is None:
                    del tag.attrs[attr]
                else:
                    tag.attrs[attr] = safe
            elif isinstance(value, str) and (
                _DANGEROUS_SCHEMES.search(value) or _CSS_EXPRESSION.search(value)
            ):
                del tag.attrs[attr]
        if tag.name == "a" and tag.get("target") == "_blank":
            tag["rel"] = "noopener noreferrer"
    cleaned = _CONTROL_CHARS.sub("", str(soup)).strip()
    return cleaned or None


def first_image_src(html: str | None, base_url: str | None = None) -> str | None:
    """First usable ``<img src>`` inside a chunk of HTML."""
    if not html or "<img" not in html.lower():
        return None
    for img in BeautifulSoup(html, "html.parser").find_all("img"):
        src = validate_media_url(img.get("src"), base_url)
        if src:
            return src
    return None
