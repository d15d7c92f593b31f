"""Feed cache with stale-while-revalidate semantics."""

from feedrelay.cache.smart_cache import CacheEntry, CacheHit, SmartCache

__all__ = ["CacheEntry", "CacheHit", "SmartCache"]
