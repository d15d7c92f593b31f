"""Persistent per-feed failure history.

Stored under ``feed-error-history`` as a list of
``{url, failures, lastError: epochMillis, lastErrorType}`` records. Records
written before failure counting existed have no ``failures`` field and are
read as a single failure.

The in-memory map is authoritative once loaded; every mutation updates it in
place and then persists, so overlapping runs cannot lose increments.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from feedrelay.models.feeds import ErrorHistoryRecord, ErrorType, FeedError
from feedrelay.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "feed-error-history"
DEFAULT_PROBLEMATIC_WINDOW_SECONDS = 7 * 24 * 60 * 60


class ErrorHistoryStore:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        problematic_window_seconds: float = DEFAULT_PROBLEMATIC_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._window_seconds = problematic_window_seconds
        self._clock = clock
        self._records: dict[str, ErrorHistoryRecord] = {}
        self._load()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, url: str) -> ErrorHistoryRecord | None:
        return self._records.get(url)

    def records(self) -> dict[str, ErrorHistoryRecord]:
        return dict(self._records)

    def is_problematic(self, url: str) -> bool:
        """True when the feed failed within the problematic window."""
        record = self._records.get(url)
        if record is None:
            return False
        return self._clock() - record.last_error_at <= self._window_seconds

    def problematic_urls(self) -> set[str]:
        return {url for url in self._records if self.is_problematic(url)}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_run(self, succeeded: Iterable[str], failed: Iterable[FeedError]) -> None:
        """Clear succeeded feeds, bump failed ones, then persist once."""
        for url in succeeded:
            self._records.pop(url, None)

        for error in failed:
            record = self._records.get(error.url)
            if record is None:
                self._records[error.url] = ErrorHistoryRecord(
                    url=error.url,
                    failures=1,
                    last_error_at=error.timestamp,
                    last_error_type=error.error_type,
                )
            else:
                record.failures += 1
                record.last_error_at = error.timestamp
                record.last_error_type = error.error_type
        self._persist()

    def clear(self, urls: Iterable[str] | None = None) -> None:
        if urls is None:
            self._records.clear()
        else:
            for url in urls:
                self._records.pop(url, None)
        self._persist()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_list(self) -> list[dict]:
        return [
            {
                "url": record.url,
                "failures": record.failures,
                "lastError": int(round(record.last_error_at * 1000)),
                "lastErrorType": record.last_error_type.value,
            }
            for record in self._records.values()
        ]

    def _load(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get(STORAGE_KEY)
        except (OSError, ValueError) as exc:
            logger.warning("Discarding unreadable error history: %s", exc)
            return
        if raw is None:
            return
        if not isinstance(raw, list):
            logger.warning("Error history has unexpected shape, ignoring it")
            return

        for item in raw:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            try:
                failures = int(item.get("failures", 1))
                last_error = float(item.get("lastError", 0)) / 1000
            except (TypeError, ValueError):
                continue
            self._records[item["url"]] = ErrorHistoryRecord(
                url=item["url"],
                failures=max(1, failures),
                last_error_at=last_error,
                last_error_type=ErrorType.coerce(item.get("lastErrorType")),
            )

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.set(STORAGE_KEY, self.to_list())
        except OSError as exc:
            logger.warning("Failed to persist error history: %s", exc)
