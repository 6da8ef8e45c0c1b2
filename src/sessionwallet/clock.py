"""Time source used by every delay, poll and timer in the pipeline.

Components never call ``asyncio.sleep`` or ``time.monotonic`` directly so
tests can swap in a virtual clock.
"""

import asyncio
import time


class Clock:
    """Wall-clock implementation backed by the running event loop."""

    def monotonic(self) -> float:
        """Seconds on a monotonic clock."""
        return time.monotonic()

    def now_ms(self) -> int:
        """Unix time in milliseconds."""
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        """Suspend the current task for ``seconds``."""
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
