"""Remembers which proxy endpoint last worked for each feed host.

Persisted as ``{host: {"name": str, "ts": epochMillis}}``. Entries older than
the TTL are ignored and pruned on the next write.
"""

from __future__ import annotations

import logging
import time
from typing import Callable
from urllib.parse import urlparse

from feedrelay.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "preferred-proxy-by-host"


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


class PreferredProxyStore:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        ttl_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, dict] = {}
        self._load()

    def get(self, target_url: str) -> str | None:
        """Name of the preferred endpoint for the URL's host, if still fresh."""
        entry = self._entries.get(host_of(target_url))
        if not entry:
            return None
        if self._clock() * 1000 - entry["ts"] > self._ttl_seconds * 1000:
            return None
        return entry["name"]

    def remember(self, target_url: str, endpoint_name: str) -> None:
        host = host_of(target_url)
        if not host:
            return
        self._entries[host] = {"name": endpoint_name, "ts": int(self._clock() * 1000)}
        self._persist()

    def forget(self, target_url: str, endpoint_name: str | None = None) -> None:
        """Clear the preference; with ``endpoint_name`` only if it matches."""
        host = host_of(target_url)
        entry = self._entries.get(host)
        if entry is None:
            return
        if endpoint_name is not None and entry["name"] != endpoint_name:
            return
        del self._entries[host]
        self._persist()

    def snapshot(self) -> dict[str, dict]:
        return {host: dict(entry) for host, entry in self._entries.items()}

    def _load(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get(STORAGE_KEY)
        except ValueError as exc:
            logger.warning("Discarding unreadable preferred-proxy map: %s", exc)
            self._store.delete(STORAGE_KEY)
            return
        if not isinstance(raw, dict):
            return
        for host, entry in raw.items():
            if not (isinstance(entry, dict) and "name" in entry and "ts" in entry):
                continue
            try:
                self._entries[host] = {"name": str(entry["name"]), "ts": int(entry["ts"])}
            except (TypeError, ValueError, OverflowError):
                logger.warning("Skipping malformed preferred-proxy entry for %s", host)

    def _persist(self) -> None:
        if self._store is None:
            return
        cutoff = self._clock() * 1000 - self._ttl_seconds * 1000
        self._entries = {h: e for h, e in self._entries.items() if e["ts"] >= cutoff}
        try:
            self._store.set(STORAGE_KEY, self._entries)
        except OSError as exc:
            logger.warning("Failed to persist preferred-proxy map: %s", exc)
