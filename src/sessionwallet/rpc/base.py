"""Narrow interface to a remote ledger endpoint.

Only the operations the pipeline needs are exposed: balance, gas price,
block number (liveness), nonce, raw transaction broadcast, and the two
lookups used by confirmation polling.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TransactionInfo:
    """A transaction as seen by ``eth_getTransactionByHash``."""
    tx_hash: str
    block_number: Optional[int] = None  # None while unmined

    @property
    def is_mined(self) -> bool:
        return self.block_number is not None


@dataclass
class TransactionReceipt:
    """Execution outcome of a mined transaction."""
    tx_hash: str
    status: int                    # 1 success, 0 reverted
    gas_used: int
    effective_gas_price: int       # wei per gas unit
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class LedgerEndpoint(ABC):
    """One remote service instance answering queries for the ledger.

    Implementations raise ``TransportError`` (or a subclass) on any
    failure; every method is a suspension point.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def get_balance(self, address: str, timeout: Optional[float] = None) -> int:
        """Balance of ``address`` in wei."""
        pass

    @abstractmethod
    async def get_gas_price(self, timeout: Optional[float] = None) -> int:
        """Current network gas price in wei."""
        pass

    @abstractmethod
    async def get_block_number(self, timeout: Optional[float] = None) -> int:
        """Latest block number. Used as a liveness probe."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, timeout: Optional[float] = None) -> int:
        """Pending nonce of ``address``."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: str, timeout: Optional[float] = None) -> str:
        """Broadcast a signed transaction and return its hash."""
        pass

    @abstractmethod
    async def get_transaction_by_hash(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionInfo]:
        """Look up a transaction. None if the endpoint does not know it."""
        pass

    @abstractmethod
    async def get_transaction_receipt(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionReceipt]:
        """Receipt of a mined transaction, or None."""
        pass

    async def close(self) -> None:
        """Release connections."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
