"""Key-value storage abstraction.

Identity records and the leaderboard are stored through the same small
``get`` / ``set`` / ``remove`` interface. ``FailoverStore`` wraps a durable
backend and drops to process memory the first time the backend fails, so a
session keeps working (without persistence) when the database is unusable.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from sessionwallet.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract string-to-string store."""

    storage_type: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, overwriting any previous one."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        pass

    async def keys(self) -> list[str]:
        """List stored keys."""
        return []

    async def close(self) -> None:
        """Release backend resources."""
        return None


class MemoryStore(KeyValueStore):
    """Process-local store. Data is lost on restart."""

    storage_type = "memory"

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data.keys())


class FailoverStore(KeyValueStore):
    """Durable store with a one-way fallback to memory.

    Once the primary raises ``StorageUnavailable`` every later call goes to
    the memory store; callers must not assume persistence.
    """

    def __init__(self, primary: KeyValueStore):
        self._primary: Optional[KeyValueStore] = primary
        self._memory = MemoryStore()

    @property
    def storage_type(self) -> str:  # type: ignore[override]
        if self._primary is None:
            return self._memory.storage_type
        return self._primary.storage_type

    @property
    def is_persistent(self) -> bool:
        return self._primary is not None

    def _fall_back(self, operation: str, error: Exception) -> None:
        logger.warning(
            f"Storage backend unavailable during {operation} ({error}); "
            "falling back to process memory, data will not survive a restart"
        )
        self._primary = None

    async def get(self, key: str) -> Optional[str]:
        if self._primary is not None:
            try:
                return await self._primary.get(key)
            except StorageUnavailable as e:
                self._fall_back("get", e)
        return await self._memory.get(key)

    async def set(self, key: str, value: str) -> None:
        if self._primary is not None:
            try:
                await self._primary.set(key, value)
                return
            except StorageUnavailable as e:
                self._fall_back("set", e)
        await self._memory.set(key, value)

    async def remove(self, key: str) -> None:
        if self._primary is not None:
            try:
                await self._primary.remove(key)
                return
            except StorageUnavailable as e:
                self._fall_back("remove", e)
        await self._memory.remove(key)

    async def keys(self) -> list[str]:
        if self._primary is not None:
            try:
                return await self._primary.keys()
            except StorageUnavailable as e:
                self._fall_back("keys", e)
        return await self._memory.keys()

    async def close(self) -> None:
        if self._primary is not None:
            await self._primary.close()

    # Enhanced methods for structured data

    async def set_json(self, key: str, value: Any) -> None:
        """Store a JSON value wrapped in a ``{value, timestamp}`` envelope."""
        envelope = {
            "value": json.dumps(value),
            "timestamp": int(time.time() * 1000),
        }
        await self.set(key, json.dumps(envelope))

    async def get_json(self, key: str) -> Any:
        """Read a value written by ``set_json``. Malformed data reads as None."""
        raw = await self.get(key)
        if not raw:
            return None
        try:
            envelope = json.loads(raw)
            return json.loads(envelope["value"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to parse JSON item {key}: {e}")
            return None
