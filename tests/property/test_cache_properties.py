"""Property tests for the smart cache.

Validates the freshness windows (fresh / stale / expired), snapshot
persistence of arbitrary article lists, idempotent writes and the entry
ceiling under arbitrary insert sequences.
"""

from __future__ import annotations

from conftest import FakeClock, article_lists, feed_urls
from hypothesis import given, settings
from hypothesis import strategies as st

from feedrelay.cache.smart_cache import SmartCache
from feedrelay.storage.kv import MemoryStore

TTL = 600
SWR = 7200


def _cache(clock: FakeClock, store: MemoryStore | None = None, **overrides) -> SmartCache:
    options = {"ttl_seconds": TTL, "swr_seconds": SWR, "max_entries": 100, "clock": clock}
    options.update(overrides)
    return SmartCache(store if store is not None else MemoryStore(), **options)


# ---------------------------------------------------------------------------
# Freshness windows
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(url=feed_urls, age=st.integers(min_value=0, max_value=3 * SWR))
def test_age_decides_fresh_stale_or_expired(url: str, age: int) -> None:
    clock = FakeClock()
    cache = _cache(clock)
    cache.set(url, [], "T")
    clock.advance(age)

    hit = cache.get(url)

    if age <= TTL:
        assert hit is not None and hit.is_stale is False
    elif age <= SWR:
        assert hit is not None and hit.is_stale is True
    else:
        assert hit is None
        assert url not in cache.keys()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(url=feed_urls, articles=article_lists, title=st.text(max_size=30))
def test_snapshot_reload_preserves_articles(url: str, articles, title: str) -> None:
    clock = FakeClock()
    store = MemoryStore()
    _cache(clock, store).set(url, articles, title)

    hit = _cache(clock, store).get(url)

    assert hit is not None
    assert hit.articles == tuple(articles)
    assert hit.title == title


@settings(max_examples=100)
@given(url=feed_urls, articles=article_lists, repeats=st.integers(min_value=1, max_value=5))
def test_repeated_set_is_idempotent(url: str, articles, repeats: int) -> None:
    clock = FakeClock()
    store = MemoryStore()
    cache = _cache(clock, store)

    cache.set(url, articles, "T")
    once = store.get("smart-feed-cache")["entries"]
    for _ in range(repeats):
        cache.set(url, articles, "T")

    assert cache.keys() == [url]
    assert store.get("smart-feed-cache")["entries"] == once


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(
    keys=st.lists(st.sampled_from([f"K{i}" for i in range(12)]), min_size=1, max_size=40),
    max_entries=st.integers(min_value=1, max_value=6),
)
def test_entry_count_never_exceeds_ceiling(keys: list[str], max_entries: int) -> None:
    cache = _cache(FakeClock(), max_entries=max_entries)

    for key in keys:
        cache.set(key, [])
        assert len(cache.keys()) <= max_entries
        assert key in cache.keys()
