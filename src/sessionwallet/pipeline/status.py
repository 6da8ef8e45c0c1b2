"""Status and result types shared by the submitter, queue and session.

Submission flow, per attempt:
1. BUILDING  - record encoded, gas priced, transaction signed
2. SENT      - accepted by an endpoint, confirmation polling starts
3. terminal  - CONFIRMED, REVERTED_ON_CHAIN, NOT_FOUND_AFTER_TIMEOUT
               or STILL_PENDING_AFTER_TIMEOUT
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sessionwallet.pipeline.actions import ActionKind


class SubmissionState(str, Enum):
    """Lifecycle of a single submission attempt."""

    BUILDING = "building"
    SENT = "sent"
    CONFIRMED = "confirmed"
    REVERTED_ON_CHAIN = "reverted_on_chain"
    NOT_FOUND_AFTER_TIMEOUT = "not_found_after_timeout"
    STILL_PENDING_AFTER_TIMEOUT = "still_pending_after_timeout"
    FAILED = "failed"               # never reached SENT

    @property
    def is_timeout(self) -> bool:
        return self in (
            SubmissionState.NOT_FOUND_AFTER_TIMEOUT,
            SubmissionState.STILL_PENDING_AFTER_TIMEOUT,
        )


class StatusKind(str, Enum):
    """Observable state of an identity's pipeline."""

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class TransactionStatus:
    """Pipeline status; only the queue's drain loop writes it.

    ``SUCCESS`` always carries a hash; ``FAILED`` and ``TIMEOUT`` never do.
    """
    kind: StatusKind
    action: Optional[ActionKind] = None
    tx_hash: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.kind == StatusKind.SUCCESS and not self.tx_hash:
            raise ValueError("Success status requires a transaction hash")
        if self.kind in (StatusKind.FAILED, StatusKind.TIMEOUT) and self.tx_hash:
            raise ValueError(f"{self.kind.value} status cannot carry a transaction hash")
        if self.kind in (StatusKind.PENDING, StatusKind.FAILED, StatusKind.TIMEOUT) and self.action is None:
            raise ValueError(f"{self.kind.value} status requires an action")

    @classmethod
    def idle(cls) -> "TransactionStatus":
        return cls(StatusKind.IDLE)

    @classmethod
    def pending(cls, action: ActionKind) -> "TransactionStatus":
        return cls(StatusKind.PENDING, action=action)

    @classmethod
    def success(cls, tx_hash: str, action: Optional[ActionKind] = None) -> "TransactionStatus":
        return cls(StatusKind.SUCCESS, action=action, tx_hash=tx_hash)

    @classmethod
    def failed(cls, action: ActionKind, reason: str) -> "TransactionStatus":
        return cls(StatusKind.FAILED, action=action, reason=reason)

    @classmethod
    def timeout(cls, action: ActionKind) -> "TransactionStatus":
        return cls(StatusKind.TIMEOUT, action=action)

    @property
    def is_pending(self) -> bool:
        return self.kind == StatusKind.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.kind in (StatusKind.SUCCESS, StatusKind.FAILED, StatusKind.TIMEOUT)


@dataclass
class TransactionResult:
    """Result of one ``Submitter.send`` call."""
    success: bool
    action: ActionKind
    state: SubmissionState
    tx_hash: Optional[str] = None
    gas_used: Optional[int] = None
    effective_rate: Optional[int] = None     # effective gas price, wei
    value: Decimal = Decimal("0")            # base fee transferred
    attempts: int = 0
    error: Optional[str] = None

    @property
    def is_indeterminate(self) -> bool:
        """Confirmation timed out; the transaction may still land."""
        return self.state.is_timeout

    @property
    def fee_paid(self) -> Decimal:
        """Value plus gas actually consumed, in native units."""
        if self.gas_used is None or self.effective_rate is None:
            return self.value
        return self.value + Decimal(self.gas_used * self.effective_rate) / Decimal(10**18)

    @classmethod
    def failure(
        cls,
        action: ActionKind,
        error: str,
        attempts: int = 0,
        state: SubmissionState = SubmissionState.FAILED,
        tx_hash: Optional[str] = None,
    ) -> "TransactionResult":
        return cls(
            success=False,
            action=action,
            state=state,
            tx_hash=tx_hash,
            attempts=attempts,
            error=error,
        )

    def to_status(self) -> TransactionStatus:
        """Terminal pipeline status for this result."""
        if self.success and self.tx_hash:
            return TransactionStatus.success(self.tx_hash, self.action)
        if self.state.is_timeout:
            return TransactionStatus.timeout(self.action)
        return TransactionStatus.failed(self.action, self.error or "unknown error")


@dataclass
class QueueItem:
    """A caller's request waiting for, or occupying, the pipeline."""
    id: str
    action: ActionKind
    payload: dict[str, Any]
    result: "asyncio.Future[TransactionResult]" = field(repr=False)
    attempt: int = 0
