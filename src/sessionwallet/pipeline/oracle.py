"""Balance oracle: live balance and gas-price queries with endpoint fallback."""

import logging
from decimal import Decimal

from web3 import Web3

from sessionwallet.exceptions import OracleUnavailable
from sessionwallet.rpc.pool import EndpointPool

logger = logging.getLogger(__name__)


class BalanceOracle:
    """Answers "how much can this identity spend" from the ledger itself.

    Nothing is cached: every call is a live query. Callers are expected to
    debounce their own polling.
    """

    def __init__(self, pool: EndpointPool):
        self.pool = pool

    async def balance_wei(self, address: str) -> int:
        """Balance in wei.

        Raises:
            OracleUnavailable: If every endpoint failed
        """
        checksum = Web3.to_checksum_address(address)
        return await self.pool.first_success(
            "eth_getBalance",
            lambda endpoint: endpoint.get_balance(checksum),
            error_cls=OracleUnavailable,
        )

    async def balance_of(self, address: str) -> Decimal:
        """Balance in native units (e.g. ETH)."""
        balance_wei = await self.balance_wei(address)
        return Decimal(str(Web3.from_wei(balance_wei, "ether")))

    async def gas_price(self) -> int:
        """Current network gas price in wei, falling back across endpoints."""
        return await self.pool.first_success(
            "eth_gasPrice",
            lambda endpoint: endpoint.get_gas_price(),
            error_cls=OracleUnavailable,
        )
