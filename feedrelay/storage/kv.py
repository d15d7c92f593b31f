"""Durable key-value storage for cache snapshots, error history and proxy preferences.

Values are JSON-serializable objects. ``JsonFileStore`` keeps one file per key
and replaces it atomically; ``MemoryStore`` is used when persistence is
disabled and in tests.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(ABC):
    """Minimal get/set/delete interface over JSON values."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""


class MemoryStore(KeyValueStore):
    """In-process store. Values are round-tripped through JSON like on disk."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def set_raw(self, key: str, raw: str) -> None:
        """Store unparsed text under ``key`` (used to simulate corrupt data)."""
        self._data[key] = raw


class JsonFileStore(KeyValueStore):
    """One ``<key>.json`` file per key under ``directory``.

    Writes go to a temp file followed by ``os.replace`` and are serialized by
    a lock, so a crash never leaves a half-written snapshot behind.

    Raises ``ValueError`` from ``get`` when a file holds invalid JSON; callers
    decide whether to discard it.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self._dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = json.dumps(value, separators=(",", ":"))
        with self._lock:
            tmp = path.with_name(f".tmp.{path.name}")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                pass
