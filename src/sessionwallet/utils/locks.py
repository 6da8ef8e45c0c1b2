"""Per-identity locking.

Guarantees that at most one submission is signing or in flight for a given
session address, even when several queues or controllers share it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: lower-cased address -> asyncio.Lock
_identity_locks: dict[str, asyncio.Lock] = {}


def get_identity_lock(address: str) -> asyncio.Lock:
    """Get or create the lock for a session address.

    Args:
        address: Session wallet address (case-insensitive)

    Returns:
        asyncio.Lock for the address
    """
    key = address.lower()
    lock = _identity_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _identity_locks[key] = lock
    return lock


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class IdentityLock:
    """Context manager for exclusive use of one identity's signing key.

    Example:
        async with IdentityLock(identity.public_address, operation="place_block"):
            ...  # build, sign, send, confirm
    """

    def __init__(
        self,
        address: str,
        timeout: Optional[float] = None,
        operation: str = "submission",
    ):
        """Initialize the lock.

        Args:
            address: Session wallet address
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.address = address
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "IdentityLock":
        """Acquire the lock."""
        self._lock = get_identity_lock(self.address)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for {self.address}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for {self.address} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire lock for {self.address} within {self.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.address}: {self.operation}")
        return False


def is_identity_busy(address: str) -> bool:
    """True while a submission holds the identity's lock."""
    lock = _identity_locks.get(address.lower())
    return lock is not None and lock.locked()


def clear_identity_locks() -> None:
    """Clear all identity locks (useful for testing)."""
    _identity_locks.clear()


def drop_identity_lock(address: str) -> None:
    """Forget an idle identity's lock once the identity is released."""
    key = address.lower()
    lock = _identity_locks.get(key)
    if lock is not None and not lock.locked():
        del _identity_locks[key]
