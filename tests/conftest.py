"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import os
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"

from sessionwallet.clock import Clock
from sessionwallet.config import Settings
from sessionwallet.exceptions import RpcResponseError, TransportError
from sessionwallet.rpc.base import LedgerEndpoint, TransactionInfo, TransactionReceipt
from sessionwallet.rpc.pool import EndpointPool
from sessionwallet.storage.base import FailoverStore, MemoryStore
from sessionwallet.utils.locks import clear_identity_locks
from sessionwallet.wallet.keystore import KeyStore

GWEI = 10**9
OWNER = "0xAbC0000000000000000000000000000000000001"


class FakeClock(Clock):
    """Virtual time.

    With ``auto_advance`` every sleep returns at once after moving the clock
    forward; otherwise sleepers wait until ``advance`` passes their deadline.
    """

    def __init__(self, start: float = 0.0, auto_advance: bool = True):
        self.now = start
        self.auto_advance = auto_advance
        self.sleeps: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future]] = []

    def monotonic(self) -> float:
        return self.now

    def now_ms(self) -> int:
        return 1_700_000_000_000 + int(self.now * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance:
            self.now += max(0.0, seconds)
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + seconds, future))
        await future

    async def advance(self, seconds: float) -> None:
        await settle()
        self.now += seconds
        due = [w for w in self._waiters if w[0] <= self.now]
        self._waiters = [w for w in self._waiters if w[0] > self.now]
        for _, future in due:
            if not future.done():
                future.set_result(None)
        await settle()


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeLedger(LedgerEndpoint):
    """Scriptable in-memory ledger endpoint.

    ``fail`` names operations that raise ``TransportError``. ``lookups`` is a
    script of what ``get_transaction_by_hash`` reports per poll
    (``"unknown"``, ``"pending"`` or ``"mined"``); once exhausted
    ``default_lookup`` applies.
    """

    def __init__(
        self,
        name: str = "fake",
        balance_wei: int = 10**18,
        gas_price: int = 2 * GWEI,
        fail: tuple = (),
    ):
        super().__init__(name)
        self.balance_wei = balance_wei
        self.gas_price = gas_price
        self.fail = set(fail)
        self.send_error: Optional[Exception] = None
        self.send_gate: Optional[asyncio.Event] = None
        self.lookups: list[str] = []
        self.default_lookup = "mined"
        self.receipt_status = 1
        self.gas_used = 21000
        self.nonce = 0
        self.calls: list[str] = []
        self.sent: list[str] = []

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise TransportError(f"{operation} unavailable on {self.name}", endpoint=self.name)

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    async def get_balance(self, address: str, timeout: Optional[float] = None) -> int:
        self._record("get_balance")
        return self.balance_wei

    async def get_gas_price(self, timeout: Optional[float] = None) -> int:
        self._record("get_gas_price")
        return self.gas_price

    async def get_block_number(self, timeout: Optional[float] = None) -> int:
        self._record("get_block_number")
        return 1000

    async def get_transaction_count(self, address: str, timeout: Optional[float] = None) -> int:
        self._record("get_transaction_count")
        return self.nonce

    async def send_raw_transaction(self, raw_tx: str, timeout: Optional[float] = None) -> str:
        self._record("send_raw_transaction")
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw_tx)
        self.nonce += 1
        return "0x" + hashlib.sha256(raw_tx.encode()).hexdigest()

    async def get_transaction_by_hash(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionInfo]:
        self._record("get_transaction_by_hash")
        state = self.lookups.pop(0) if self.lookups else self.default_lookup
        if state == "unknown":
            return None
        if state == "pending":
            return TransactionInfo(tx_hash=tx_hash)
        return TransactionInfo(tx_hash=tx_hash, block_number=1001)

    async def get_transaction_receipt(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionReceipt]:
        self._record("get_transaction_receipt")
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            gas_used=self.gas_used,
            effective_gas_price=self.gas_price,
            block_number=1001,
        )


def make_settings(**overrides) -> Settings:
    """Settings with deterministic gas sizing and no .env lookup."""
    values = dict(
        rpc_urls="http://a.test,http://b.test,http://c.test",
        gas_price_buffer=1.0,
        base_gas_units=20000,
        gas_units_per_word=0,
        gas_safety_units=0,
        gas_limit_margin_pct=0,
        fee_place_block=Decimal("0.000008"),
        safety_margin=Decimal("0.00001"),
        congestion_buffer=Decimal("0.00001"),
        database_url="sqlite+aiosqlite:///:memory:",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def wei(amount: str) -> int:
    return int(Decimal(amount) * 10**18)


@pytest.fixture(autouse=True)
def reset_locks():
    """Clear identity locks before each test."""
    clear_identity_locks()
    yield
    clear_identity_locks()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def pool(ledger: FakeLedger) -> EndpointPool:
    return EndpointPool([ledger])


@pytest.fixture
def store() -> FailoverStore:
    return FailoverStore(MemoryStore())


@pytest.fixture
def key_store(store: FailoverStore) -> KeyStore:
    return KeyStore(store)


@pytest.fixture
def database_url(tmp_path) -> str:
    """Temp-file SQLite database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'sessionwallet.db'}"


@pytest_asyncio.fixture
async def identity(key_store: KeyStore):
    return await key_store.create(OWNER)


def rpc_error(message: str) -> RpcResponseError:
    return RpcResponseError(-32000, message, endpoint="fake")
