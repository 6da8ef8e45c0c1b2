"""Factory for a fully wired session controller."""

import logging
from typing import Optional

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.config import Settings, get_settings
from sessionwallet.pipeline.fees import FeePolicy
from sessionwallet.pipeline.oracle import BalanceOracle
from sessionwallet.pipeline.submitter import Submitter
from sessionwallet.rpc.base import LedgerEndpoint
from sessionwallet.rpc.jsonrpc import JsonRpcEndpoint
from sessionwallet.rpc.pool import EndpointPool
from sessionwallet.session import SessionController
from sessionwallet.storage.base import FailoverStore, KeyValueStore
from sessionwallet.storage.database import SqlKeyValueStore
from sessionwallet.wallet.keystore import KeyStore
from sessionwallet.wallet.leaderboard import Leaderboard

logger = logging.getLogger(__name__)


def create_endpoints(settings: Settings) -> list[LedgerEndpoint]:
    """One JSON-RPC client per configured URL, primary first."""
    return [JsonRpcEndpoint(url, timeout=settings.rpc_timeout) for url in settings.endpoint_urls]


def create_store(settings: Settings) -> FailoverStore:
    """Database-backed store that falls back to memory."""
    return FailoverStore(SqlKeyValueStore(settings.database_url, echo=settings.debug))


def create_session(
    settings: Optional[Settings] = None,
    endpoints: Optional[list[LedgerEndpoint]] = None,
    store: Optional[KeyValueStore] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> SessionController:
    """Build a session controller and everything it depends on.

    Args:
        settings: Defaults to the cached environment settings
        endpoints: Ledger endpoints; defaults to JSON-RPC clients for ``rpc_urls``
        store: Key-value store; defaults to the database with memory fallback
        clock: Time source for every delay and poll

    Returns:
        SessionController ready for ``init_identity``
    """
    settings = settings or get_settings()

    if store is None:
        store = create_store(settings)
    failover = store if isinstance(store, FailoverStore) else FailoverStore(store)

    pool = EndpointPool(endpoints or create_endpoints(settings), call_timeout=settings.rpc_timeout)
    oracle = BalanceOracle(pool)
    fee_policy = FeePolicy(settings, oracle, clock)
    submitter = Submitter(settings, pool, fee_policy=fee_policy, clock=clock)

    logger.info(f"Session pipeline using {len(pool)} endpoint(s) on chain {settings.chain_id}")

    return SessionController(
        settings,
        key_store=KeyStore(failover, prefix=settings.storage_prefix),
        oracle=oracle,
        submitter=submitter,
        clock=clock,
        leaderboard=Leaderboard(failover, key=settings.leaderboard_key, size=settings.leaderboard_size),
    )


async def close_session(session: SessionController) -> None:
    """Stop timers and release network and storage resources."""
    await session.close()
    await session.submitter.pool.close()
    await session.key_store.store.close()
