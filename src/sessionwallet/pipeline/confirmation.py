"""Bounded confirmation polling.

An explicit state machine driven by the clock: each tick looks the
transaction up, picks the next interval from the table (short while the
transaction is unknown, longer once it is known but unmined) and stops on
a receipt, on the poll budget or on the overall timeout.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.config import Settings
from sessionwallet.exceptions import AllEndpointsFailed
from sessionwallet.pipeline.status import SubmissionState
from sessionwallet.rpc.base import TransactionReceipt
from sessionwallet.rpc.pool import EndpointPool

logger = logging.getLogger(__name__)


class PollState(str, Enum):
    """What a single poll tick observed."""

    NOT_FOUND = "not_found"
    PENDING = "pending"
    MINED = "mined"
    UNREACHABLE = "unreachable"


@dataclass
class ConfirmationOutcome:
    """Terminal result of polling one transaction."""
    state: SubmissionState
    receipt: Optional[TransactionReceipt] = None
    polls: int = 0


class ConfirmationPoller:
    """Waits for a sent transaction to be mined."""

    def __init__(self, pool: EndpointPool, settings: Settings, clock: Clock = SYSTEM_CLOCK):
        self.pool = pool
        self.clock = clock
        self.timeout = settings.confirmation_timeout
        self.max_polls = settings.max_poll_attempts
        self.intervals = {
            PollState.NOT_FOUND: settings.poll_interval_not_found,
            PollState.PENDING: settings.poll_interval_pending,
        }

    async def _tick(self, tx_hash: str) -> tuple[PollState, Optional[TransactionReceipt]]:
        try:
            tx = await self.pool.first_success(
                "eth_getTransactionByHash",
                lambda endpoint: endpoint.get_transaction_by_hash(tx_hash),
            )
        except AllEndpointsFailed as e:
            logger.warning(f"Poll for {tx_hash} reached no endpoint: {e}")
            return PollState.UNREACHABLE, None

        if tx is None:
            return PollState.NOT_FOUND, None
        if not tx.is_mined:
            return PollState.PENDING, None

        try:
            receipt = await self.pool.first_success(
                "eth_getTransactionReceipt",
                lambda endpoint: endpoint.get_transaction_receipt(tx_hash),
            )
        except AllEndpointsFailed as e:
            logger.warning(f"Receipt for {tx_hash} unavailable: {e}")
            return PollState.PENDING, None

        if receipt is None:
            return PollState.PENDING, None
        return PollState.MINED, receipt

    async def wait(self, tx_hash: str) -> ConfirmationOutcome:
        """Poll until mined or the budget runs out."""
        started = self.clock.monotonic()
        last_seen = PollState.NOT_FOUND

        for poll in range(1, self.max_polls + 1):
            observed, receipt = await self._tick(tx_hash)
            logger.debug(f"Poll {poll}/{self.max_polls} for {tx_hash}: {observed.value}")

            if observed == PollState.MINED and receipt is not None:
                state = (
                    SubmissionState.CONFIRMED if receipt.succeeded else SubmissionState.REVERTED_ON_CHAIN
                )
                return ConfirmationOutcome(state=state, receipt=receipt, polls=poll)

            if observed != PollState.UNREACHABLE:
                last_seen = observed

            interval = self.intervals[last_seen]
            elapsed = self.clock.monotonic() - started
            if poll == self.max_polls or elapsed + interval > self.timeout:
                break
            await self.clock.sleep(interval)

        state = (
            SubmissionState.STILL_PENDING_AFTER_TIMEOUT
            if last_seen == PollState.PENDING
            else SubmissionState.NOT_FOUND_AFTER_TIMEOUT
        )
        logger.warning(f"Transaction {tx_hash} not confirmed after {poll} polls: {state.value}")
        return ConfirmationOutcome(state=state, polls=poll)
