"""Ordered endpoint list with immediate fallback."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from sessionwallet.exceptions import AllEndpointsFailed, TransportError
from sessionwallet.rpc.base import LedgerEndpoint

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(
    endpoint: LedgerEndpoint,
    operation: str,
    call: Callable[[LedgerEndpoint], Awaitable[T]],
    timeout: Optional[float],
) -> T:
    """Run one endpoint call under a hard timeout.

    Raises:
        TransportError: On timeout; other endpoint errors propagate as raised
    """
    try:
        if timeout is None:
            return await call(endpoint)
        return await asyncio.wait_for(call(endpoint), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransportError(f"{operation} timed out after {timeout}s", endpoint=endpoint.name) from e


class EndpointPool:
    """Primary endpoint plus fallbacks, tried strictly in order.

    There is no delay between endpoints: the first failure moves straight
    on to the next one.
    """

    def __init__(self, endpoints: Sequence[LedgerEndpoint], call_timeout: Optional[float] = None):
        if not endpoints:
            raise ValueError("At least one ledger endpoint is required")
        if len(endpoints) < 2:
            logger.warning("Only one ledger endpoint configured; no fallback is available")
        self.endpoints = list(endpoints)
        self.call_timeout = call_timeout

    def __len__(self) -> int:
        return len(self.endpoints)

    def __iter__(self):
        return iter(self.endpoints)

    async def first_success(
        self,
        operation: str,
        call: Callable[[LedgerEndpoint], Awaitable[T]],
        error_cls: type[AllEndpointsFailed] = AllEndpointsFailed,
    ) -> T:
        """Return the first endpoint result that does not raise.

        Raises:
            AllEndpointsFailed: (or ``error_cls``) wrapping the last failure
        """
        last_error: Optional[Exception] = None
        for endpoint in self.endpoints:
            try:
                return await call_with_timeout(endpoint, operation, call, self.call_timeout)
            except TransportError as e:
                last_error = e
                logger.warning(f"{operation} failed on {endpoint.name}: {e}")
            except (ValueError, KeyError, TypeError) as e:
                # Malformed data surfaced by the endpoint implementation
                last_error = e
                logger.warning(f"{operation} got a malformed response from {endpoint.name}: {e}")

        raise error_cls(operation, last_error) from last_error

    async def close(self) -> None:
        for endpoint in self.endpoints:
            await endpoint.close()
