"""Durable key-value storage backends."""

from feedrelay.storage.kv import JsonFileStore, KeyValueStore, MemoryStore

__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore"]
