"""Session controller: the single façade the game layer talks to.

Owns the active identity, its action queue, the observable status
(balance, readiness, totals, last error) and the background balance
refresher. Every public method returns a value; nothing raises past this
boundary.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.config import Settings
from sessionwallet.exceptions import IdentityError, SessionWalletError
from sessionwallet.pipeline.actions import ActionKind
from sessionwallet.pipeline.oracle import BalanceOracle
from sessionwallet.pipeline.queue import ActionQueue
from sessionwallet.pipeline.status import QueueItem, TransactionResult, TransactionStatus
from sessionwallet.pipeline.submitter import Submitter
from sessionwallet.utils.locks import drop_identity_lock
from sessionwallet.wallet.keystore import Identity, KeyStore
from sessionwallet.wallet.leaderboard import Leaderboard, LeaderboardEntry

logger = logging.getLogger(__name__)


@dataclass
class SessionTotals:
    """Running totals since the identity was loaded."""
    transactions: int = 0
    spent: Decimal = Decimal("0")


@dataclass
class SessionStatus:
    """Read-only snapshot for display."""
    owner: Optional[str]
    address: Optional[str]
    balance: Decimal
    is_ready: bool
    is_loading: bool
    pending: Optional[ActionKind]
    queue_length: int
    status: TransactionStatus
    last_error: Optional[str]
    last_tx_hash: Optional[str]
    last_outcome: Optional[TransactionStatus] = None
    totals: SessionTotals = field(default_factory=SessionTotals)

    @property
    def pending_count(self) -> int:
        return self.queue_length + (1 if self.pending is not None else 0)


class SessionController:
    """Orchestrates key store, balance oracle, submitter and queue."""

    def __init__(
        self,
        settings: Settings,
        key_store: KeyStore,
        oracle: BalanceOracle,
        submitter: Submitter,
        clock: Clock = SYSTEM_CLOCK,
        leaderboard: Optional[Leaderboard] = None,
    ):
        self.settings = settings
        self.key_store = key_store
        self.oracle = oracle
        self.submitter = submitter
        self.clock = clock
        self.leaderboard = leaderboard

        self._owner: Optional[str] = None
        self._identity: Optional[Identity] = None
        self._queue: Optional[ActionQueue] = None
        self._balance = Decimal("0")
        self._is_loading = False
        self._last_error: Optional[str] = None
        self._last_tx_hash: Optional[str] = None
        self._last_outcome: Optional[TransactionStatus] = None
        self._totals = SessionTotals()
        self._resets_pending = 0
        self._releasing = False
        # Serializes init, reset and disconnect
        self._lifecycle_lock = asyncio.Lock()
        self._last_refresh: Optional[float] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "SessionController":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def start(self) -> None:
        """Start the background balance refresher."""
        if self._refresh_task is None:
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    async def close(self) -> None:
        """Wait for queued work, then stop timers."""
        if self._queue is not None:
            await self._queue.join()
        tasks = list(self._background)
        if self._refresh_task is not None:
            tasks.append(self._refresh_task)
            self._refresh_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def address(self) -> Optional[str]:
        return self._identity.public_address if self._identity else None

    @property
    def is_ready(self) -> bool:
        return self._identity is not None and self._balance > self.settings.funded_threshold

    async def init_identity(self, owner: str) -> Optional[str]:
        """Load the owner's identity, creating one on first use.

        Returns the session address, or None on failure (see ``last_error``).
        """
        if self._resetting:
            self._last_error = "Identity reset in progress"
            return None

        async with self._lifecycle_lock:
            try:
                identity = await self.key_store.get(owner)
                if identity is None:
                    identity = await self.key_store.create(owner)
            except SessionWalletError as e:
                self._last_error = f"Failed to initialize session wallet: {e}"
                logger.error(self._last_error)
                return None

            if self._identity is not None and self._identity.public_address != identity.public_address:
                await self._release_identity()

            if self._identity is None or self._identity.public_address != identity.public_address:
                self._activate(owner, identity)

        await self.refresh()
        return identity.public_address

    async def reset_identity(self, owner: str) -> None:
        """Destroy the owner's identity. Idempotent.

        Waits for a running init and for queued submissions to finish first;
        new submissions are refused until the reset completes.
        """
        self._resets_pending += 1
        try:
            async with self._lifecycle_lock:
                if self._owner is not None and self._owner.lower() == owner.strip().lower():
                    await self._release_identity()
                await self.key_store.clear(owner)
                self._last_error = None
        except SessionWalletError as e:
            self._last_error = f"Failed to reset session wallet: {e}"
            logger.error(self._last_error)
        finally:
            self._resets_pending -= 1

    async def disconnect(self) -> None:
        """Forget the active identity without deleting it from storage."""
        async with self._lifecycle_lock:
            await self._release_identity()

    @property
    def _resetting(self) -> bool:
        return self._resets_pending > 0

    def _activate(self, owner: str, identity: Identity) -> None:
        self._owner = owner
        self._identity = identity
        self._balance = Decimal("0")
        self._totals = SessionTotals()
        self._last_tx_hash = None
        self._last_outcome = None
        self._last_error = None
        self._last_refresh = None
        self._queue = ActionQueue(
            runner=lambda item: self._run_item(identity, item),
            item_delay=self.settings.queue_item_delay,
            clock=self.clock,
            on_result=self._record_result,
            on_status=self._record_status,
        )
        logger.info(f"Session identity {identity.public_address} active for owner {owner}")

    async def _release_identity(self) -> None:
        if self._queue is not None:
            self._releasing = True
            try:
                await self._queue.join()
            finally:
                self._releasing = False
        if self._identity is not None:
            drop_identity_lock(self._identity.public_address)
        self._owner = None
        self._identity = None
        self._queue = None
        self._balance = Decimal("0")
        self._totals = SessionTotals()
        self._last_tx_hash = None
        self._last_outcome = None
        self._last_error = None
        self._last_refresh = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> SessionStatus:
        """Snapshot of everything the UI displays."""
        queue = self._queue
        in_flight = queue.in_flight if queue else None
        return SessionStatus(
            owner=self._owner,
            address=self.address,
            balance=self._balance,
            is_ready=self.is_ready,
            is_loading=self._is_loading,
            pending=in_flight.action if in_flight else None,
            queue_length=queue.queue_length if queue else 0,
            status=queue.status if queue else TransactionStatus.idle(),
            last_error=self._last_error,
            last_tx_hash=self._last_tx_hash,
            last_outcome=self._last_outcome,
            totals=SessionTotals(self._totals.transactions, self._totals.spent),
        )

    async def refresh(self) -> None:
        """Re-read the balance. Failures land in ``last_error``."""
        identity = self._identity
        if identity is None:
            return
        self._last_refresh = self.clock.monotonic()
        self._is_loading = True
        try:
            balance = await self.oracle.balance_of(identity.public_address)
        except SessionWalletError as e:
            self._last_error = f"Failed to get balance: {e}"
            logger.warning(self._last_error)
            return
        finally:
            self._is_loading = False

        if self._identity is identity:
            self._balance = balance
            logger.debug(f"Balance of {identity.public_address}: {balance}")

    async def _refresh_loop(self) -> None:
        interval = self.settings.balance_refresh_interval
        spacing = self.settings.balance_refresh_min_spacing
        while True:
            await self.clock.sleep(interval)
            if self._identity is None:
                continue
            if self._last_refresh is not None and self.clock.monotonic() - self._last_refresh < spacing:
                continue
            await self.refresh()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def execute_action(self, kind: "ActionKind | str", payload: Optional[dict[str, Any]] = None) -> bool:
        """Queue a game action and wait for its outcome.

        Returns True only when the transaction confirmed successfully.
        """
        try:
            action = ActionKind.parse(kind)
        except ValueError as e:
            self._last_error = str(e)
            return False

        if self._resetting:
            self._last_error = "Identity reset in progress"
            return False
        if self._releasing:
            self._last_error = "Session identity is being released"
            return False
        if self._identity is None or self._queue is None:
            self._last_error = "Session wallet not initialized"
            logger.info(f"Ignoring {action.value}: {self._last_error}")
            return False

        future = self._queue.submit(action, payload or {})
        try:
            result = await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.cancelled():
                raise
            self._last_error = f"{action.value} was dropped before it ran"
            return False
        return result.success

    async def _run_item(self, identity: Identity, item: QueueItem) -> TransactionResult:
        if identity is not self._identity:
            return TransactionResult.failure(
                item.action, str(IdentityError("Session identity changed before submission"))
            )
        return await self.submitter.send(identity, item.action, item.payload)

    def _record_result(self, item: QueueItem, result: TransactionResult) -> None:
        if result.success:
            self._totals.transactions += 1
            self._totals.spent += result.fee_paid
            self._last_tx_hash = result.tx_hash
            self._last_error = None
            self._schedule_refresh(self.settings.post_tx_refresh_delay)
        else:
            self._last_error = result.error

    def _record_status(self, status: TransactionStatus) -> None:
        if status.is_terminal:
            self._last_outcome = status

    def _schedule_refresh(self, delay: float) -> None:
        async def _delayed() -> None:
            await self.clock.sleep(delay)
            await self.refresh()

        task = asyncio.get_running_loop().create_task(_delayed())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    async def record_score(self, score: int, level: int = 1, blocks_placed: int = 0) -> Optional[int]:
        """Save a finished game with the current session totals.

        Returns the owner's leaderboard rank, or None when nothing was saved.
        """
        if self.leaderboard is None or self._identity is None or self._owner is None:
            return None
        entry = LeaderboardEntry(
            owner_key=self._owner,
            session_address=self._identity.public_address,
            score=score,
            level=level,
            blocks_placed=blocks_placed,
            transactions=self._totals.transactions,
            gas_spent=str(self._totals.spent),
            timestamp=self.clock.now_ms(),
        )
        try:
            await self.leaderboard.save(entry)
            return await self.leaderboard.rank(self._owner)
        except SessionWalletError as e:
            self._last_error = f"Failed to save score: {e}"
            logger.error(self._last_error)
            return None
