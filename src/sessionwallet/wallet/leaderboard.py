"""Local leaderboard kept in the shared key-value store."""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sessionwallet.storage.base import FailoverStore

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    """Best recorded game of one owner."""
    owner_key: str
    session_address: str
    score: int
    level: int = 1
    blocks_placed: int = 0
    transactions: int = 0
    gas_spent: str = "0"
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "LeaderboardEntry":
        return cls(
            owner_key=data["owner_key"],
            session_address=data.get("session_address", ""),
            score=int(data["score"]),
            level=int(data.get("level", 1)),
            blocks_placed=int(data.get("blocks_placed", 0)),
            transactions=int(data.get("transactions", 0)),
            gas_spent=str(data.get("gas_spent", "0")),
            timestamp=int(data.get("timestamp", 0)),
        )


class Leaderboard:
    """Top scores, one entry per owner, capped in size."""

    def __init__(self, store: FailoverStore, key: str = "block_placer_leaderboard", size: int = 100):
        self.store = store
        self.key = key
        self.size = size

    async def entries(self) -> list[LeaderboardEntry]:
        """All entries, best first. Corrupt data reads as an empty board."""
        data = await self.store.get_json(self.key)
        if not isinstance(data, list):
            return []
        entries = []
        for item in data:
            try:
                entries.append(LeaderboardEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed leaderboard entry: {e}")
        return entries

    async def save(self, entry: LeaderboardEntry) -> None:
        """Record a game; an owner's entry is only replaced by a higher score."""
        entries = await self.entries()
        owner = entry.owner_key.lower()

        existing = next((i for i, e in enumerate(entries) if e.owner_key.lower() == owner), None)
        if existing is None:
            entries.append(entry)
        elif entry.score > entries[existing].score:
            entries[existing] = entry

        entries.sort(key=lambda e: e.score, reverse=True)
        await self.store.set_json(self.key, [asdict(e) for e in entries[: self.size]])

    async def rank(self, owner: str) -> Optional[int]:
        """1-based position of the owner, or None."""
        for position, entry in enumerate(await self.entries(), start=1):
            if entry.owner_key.lower() == owner.lower():
                return position
        return None

    async def best(self, owner: str) -> Optional[LeaderboardEntry]:
        """The owner's best entry, or None."""
        for entry in await self.entries():
            if entry.owner_key.lower() == owner.lower():
                return entry
        return None
