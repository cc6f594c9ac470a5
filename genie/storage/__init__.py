"""Durable state storage for genie."""

from .state_store import KeyValueStore, MemoryStore, SQLiteStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "SQLiteStore",
]
