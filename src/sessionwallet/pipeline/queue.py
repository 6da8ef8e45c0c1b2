"""Strict FIFO action queue, one in-flight submission at a time.

``submit`` is synchronous: if the pipeline is idle the item is dispatched at
once, otherwise it is appended to the queue. Either way the caller gets a
future that resolves with the item's ``TransactionResult``.

A single drain task owns the pipeline while it is busy. It runs the
dispatched item, publishes the terminal status, waits ``item_delay`` and
pops the next item, until the queue is empty; then the status returns to
idle. No other code path writes the status while the drain task exists.
"""

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.pipeline.actions import ActionKind
from sessionwallet.pipeline.status import QueueItem, TransactionResult, TransactionStatus

logger = logging.getLogger(__name__)

Runner = Callable[[QueueItem], Awaitable[TransactionResult]]
ResultListener = Callable[[QueueItem, TransactionResult], None]
StatusListener = Callable[[TransactionStatus], None]


class ActionQueue:
    """Serializes submissions for one identity."""

    def __init__(
        self,
        runner: Runner,
        item_delay: float = 0.5,
        clock: Clock = SYSTEM_CLOCK,
        on_result: Optional[ResultListener] = None,
        on_status: Optional[StatusListener] = None,
    ):
        self._runner = runner
        self._item_delay = item_delay
        self._clock = clock
        self._on_result = on_result
        self._on_status = on_status
        self._items: deque[QueueItem] = deque()
        self._in_flight: Optional[QueueItem] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._status = TransactionStatus.idle()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def status(self) -> TransactionStatus:
        return self._status

    @property
    def is_busy(self) -> bool:
        """True from dispatch until the queue has fully drained."""
        return self._drain_task is not None

    @property
    def queue_length(self) -> int:
        """Items waiting behind the in-flight one."""
        return len(self._items)

    @property
    def in_flight(self) -> Optional[QueueItem]:
        return self._in_flight

    @property
    def pending_count(self) -> int:
        """Waiting plus in-flight; each request is counted once."""
        return len(self._items) + (1 if self._in_flight is not None else 0)

    def submit(self, action: ActionKind, payload: Optional[dict[str, Any]] = None) -> "asyncio.Future[TransactionResult]":
        """Dispatch now if idle, otherwise enqueue. Must run inside the event loop."""
        loop = asyncio.get_running_loop()
        item = QueueItem(
            id=uuid.uuid4().hex[:12],
            action=ActionKind(action),
            payload=dict(payload or {}),
            result=loop.create_future(),
        )

        if self._drain_task is None:
            self._idle.clear()
            self._start(item)
            logger.info(f"Dispatching {item.action.value} immediately (id={item.id})")
            self._drain_task = loop.create_task(self._drain(item))
        else:
            self._items.append(item)
            logger.info(
                f"Queued {item.action.value} (id={item.id}), {len(self._items)} waiting"
            )

        return item.result

    async def join(self) -> None:
        """Wait until nothing is queued or in flight."""
        await self._idle.wait()

    def _set_status(self, status: TransactionStatus) -> None:
        self._status = status
        if self._on_status is not None:
            self._on_status(status)

    def _start(self, item: QueueItem) -> None:
        item.attempt += 1
        self._in_flight = item
        self._set_status(TransactionStatus.pending(item.action))

    async def _drain(self, first: QueueItem) -> None:
        item = first
        try:
            while True:
                await self._process(item)
                if not self._items:
                    break
                await self._clock.sleep(self._item_delay)
                item = self._items.popleft()
                self._start(item)
        finally:
            self._in_flight = None
            self._drain_task = None
            self._fail_leftovers()
            self._set_status(TransactionStatus.idle())
            self._idle.set()
            logger.debug("Action queue drained")

    async def _process(self, item: QueueItem) -> None:
        try:
            result = await self._runner(item)
        except asyncio.CancelledError:
            if not item.result.done():
                item.result.cancel()
            raise
        except Exception as e:
            logger.exception(f"Runner crashed on {item.action.value} (id={item.id})")
            result = TransactionResult.failure(item.action, f"Internal error: {e}")

        self._in_flight = None
        self._set_status(result.to_status())
        if self._on_result is not None:
            try:
                self._on_result(item, result)
            except Exception:
                logger.exception(f"Result listener failed for {item.id}")
        if not item.result.done():
            item.result.set_result(result)

    def _fail_leftovers(self) -> None:
        # Only reachable when the drain task is cancelled mid-queue
        while self._items:
            item = self._items.popleft()
            if not item.result.done():
                item.result.cancel()
