"""Game actions and the record embedded in each transaction."""

import json
import re
from enum import Enum
from typing import Any, Optional


class ActionKind(str, Enum):
    """Game events recorded on the ledger."""

    PLACE_BLOCK = "place_block"
    CLEAR_LINE = "clear_line"
    NEW_GAME = "new_game"
    GAME_OVER = "game_over"

    @classmethod
    def parse(cls, value: "str | ActionKind") -> "ActionKind":
        """Accept ``place_block``, ``PLACE_BLOCK`` or ``PlaceBlock``.

        Raises:
            ValueError: If the value names no known action
        """
        if isinstance(value, cls):
            return value
        normalized = re.sub(r"(?<!^)(?=[A-Z][a-z])", "_", str(value).strip()).lower()
        normalized = normalized.replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(a.value for a in cls)
            raise ValueError(f"Unknown action '{value}'. Expected one of: {valid}") from None


def build_action_record(
    action: ActionKind,
    payload: Optional[dict[str, Any]],
    signer: str,
    attempt: int,
    timestamp_ms: int,
) -> dict[str, Any]:
    """Assemble ``{action, timestamp, signer, attempt, ...payload}``.

    Reserved fields win over payload keys of the same name.
    """
    record: dict[str, Any] = dict(payload or {})
    record.update(
        {
            "action": ActionKind(action).value,
            "timestamp": timestamp_ms,
            "signer": signer,
            "attempt": attempt,
        }
    )
    return record


def encode_action_record(record: dict[str, Any]) -> bytes:
    """Serialize a record to compact UTF-8 JSON."""
    return json.dumps(record, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")
