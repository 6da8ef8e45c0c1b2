"""Key-value storage shared by the key store and the leaderboard."""

from sessionwallet.storage.base import FailoverStore, KeyValueStore, MemoryStore
from sessionwallet.storage.database import SqlKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "FailoverStore",
    "SqlKeyValueStore",
]
