"""Shared test fixtures and hypothesis strategies for the feed relay test suite."""

from __future__ import annotations

import ipaddress
import socket
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from hypothesis import strategies as st

from feedrelay.cache.smart_cache import SmartCache
from feedrelay.config.settings import FeedRelaySettings
from feedrelay.models.feeds import Article
from feedrelay.proxy.health import HealthTracker
from feedrelay.proxy.preferred import PreferredProxyStore
from feedrelay.proxy.registry import ProxyRegistry
from feedrelay.proxy.types import ProxyEndpoint, ResponseKind
from feedrelay.resilience.circuit_breaker import ProviderCircuitBreaker
from feedrelay.storage.kv import MemoryStore


# ---------------------------------------------------------------------------
# Keep settings independent of the developer's environment
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_feedrelay_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import os

    for key in list(os.environ):
        if key.startswith("FEEDRELAY_"):
            monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# DNS: hosts under .internal resolve privately, everything else publicly
# ---------------------------------------------------------------------------

PUBLIC_IP = "93.184.216.34"
INTERNAL_IP = "10.0.0.8"


def fake_getaddrinfo(host, port, *args, **kwargs):
    try:
        ip = str(ipaddress.ip_address(host))
    except ValueError:
        ip = INTERNAL_IP if host.endswith(".internal") else PUBLIC_IP
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, port or 0))]


@pytest.fixture(autouse=True, scope="session")
def _offline_dns():
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("feedrelay.validators.url_validator.socket.getaddrinfo", fake_getaddrinfo)
        yield


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

BASE_DATE = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_article(index: int = 0, source: str = "Example", **overrides) -> Article:
    fields = {
        "title": f"Article {index}",
        "link": f"https://example.com/posts/{index}",
        "pub_date": BASE_DATE + timedelta(hours=index),
        "description": f"Summary {index}",
        "source_title": source,
    }
    fields.update(overrides)
    return Article(**fields)


RSS_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>Example Feed</title>
    <link>https://example.com/</link>
    <description>Example description</description>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Mon, 15 Jan 2024 10:00:00 GMT</pubDate>
      <author>jane@example.com (Jane Doe)</author>
      <category>Tech</category>
    </item>
    <item>
      <title>Second post</title>
      <link>https://example.com/second</link>
      <description>Plain text</description>
      <pubDate>Tue, 16 Jan 2024 10:00:00 GMT</pubDate>
      <enclosure url="https://example.com/episode.mp3" type="audio/mpeg" length="1234"/>
      <itunes:duration>12:34</itunes:duration>
    </item>
  </channel>
</rss>
"""

ATOM_SAMPLE = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.org/"/>
  <updated>2024-01-15T10:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://atom.example.org/entry"/>
    <id>urn:uuid:1</id>
    <updated>2024-01-15T10:00:00Z</updated>
    <summary>Atom summary</summary>
    <author><name>Alex</name></author>
  </entry>
</feed>
"""


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> FeedRelaySettings:
    return FeedRelaySettings()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(store: MemoryStore, clock: FakeClock) -> SmartCache:
    return SmartCache(store, ttl_seconds=600, swr_seconds=7200, max_entries=100, clock=clock)


@pytest.fixture
def breaker() -> ProviderCircuitBreaker:
    return ProviderCircuitBreaker(window_size=10, failure_threshold=3, cooldown_seconds=300)


def make_endpoint(
    name: str,
    priority: int = 0,
    kind: ResponseKind = ResponseKind.RAW,
    **overrides,
) -> ProxyEndpoint:
    fields = {
        "name": name,
        "url_template": f"https://{name.lower()}.proxy.test/?url=",
        "timeout_seconds": 5.0,
        "priority": priority,
        "response_kind": kind,
    }
    fields.update(overrides)
    return ProxyEndpoint(**fields)


def make_response(
    status_code: int = 200, text: str = RSS_SAMPLE, headers: dict | None = None
) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.text = text
    response.headers = httpx.Headers(headers or {})
    return response


@pytest.fixture
def http_client() -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.return_value = make_response()
    return client


@pytest.fixture
def registry(http_client: AsyncMock, store: MemoryStore, clock: FakeClock) -> ProxyRegistry:
    return ProxyRegistry(
        [make_endpoint("Alpha", 0), make_endpoint("Beta", 1), make_endpoint("Gamma", 2)],
        http_client=http_client,
        health=HealthTracker(failure_threshold=3, recovery_seconds=300, clock=clock),
        preferred=PreferredProxyStore(store, clock=clock),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Hypothesis strategies (reusable across property tests)
# ---------------------------------------------------------------------------

feed_urls = st.from_regex(r"https://[a-z]{3,10}\.(com|org|net)/[a-z]{1,8}\.xml", fullmatch=True)

provider_names = st.sampled_from(["RSS2JSON", "AllOrigins", "CorsProxy.io", "CodeTabs", "direct"])

articles = st.builds(
    Article,
    title=st.text(min_size=1, max_size=40),
    link=st.from_regex(r"https://example\.com/[a-z0-9]{1,12}", fullmatch=True),
    pub_date=st.datetimes(
        min_value=datetime(2000, 1, 1),
        max_value=datetime(2030, 1, 1),
        timezones=st.just(timezone.utc),
    ),
    description=st.text(max_size=80),
    source_title=st.text(max_size=20),
    categories=st.lists(st.text(min_size=1, max_size=10), max_size=3).map(tuple),
)

article_lists = st.lists(articles, max_size=8)

# Circuit breaker call sequences
call_results = st.lists(st.booleans(), min_size=1, max_size=20)
