"""Fee policy: what an action costs and whether the wallet can pay for it.

The numbers are tunable heuristics, not protocol-exact: the only promise is
that the quote never under-funds the transaction the submitter will build,
which holds because both sides share ``estimate_gas_limit`` and
``buffered_gas_price``.
"""

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING, Any, Optional, Union

from web3 import Web3

from sessionwallet.clock import SYSTEM_CLOCK, Clock
from sessionwallet.config import Settings
from sessionwallet.pipeline.actions import ActionKind, build_action_record, encode_action_record
from sessionwallet.pipeline.oracle import BalanceOracle

if TYPE_CHECKING:
    from sessionwallet.wallet.keystore import Identity

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Placeholder signer used to size the record before the real one is known
_SIZING_SIGNER = "0x" + "f" * 40


def estimate_gas_limit(payload_size: int, settings: Settings) -> int:
    """Gas limit for a transfer carrying ``payload_size`` bytes of calldata.

    base units + per-32-byte word cost + fixed safety units, then the
    percentage margin on top.
    """
    words = math.ceil(payload_size / 32)
    units = settings.base_gas_units + words * settings.gas_units_per_word + settings.gas_safety_units
    return math.ceil(units * (100 + settings.gas_limit_margin_pct) / 100)


def buffered_gas_price(gas_price_wei: int, settings: Settings) -> int:
    """Network gas price times the configured buffer, rounded up."""
    buffered = Decimal(gas_price_wei) * Decimal(str(settings.gas_price_buffer))
    return int(buffered.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class FeeQuote:
    """Cost breakdown for one action, in native units."""
    action: ActionKind
    base_fee: Decimal
    gas_estimate: Decimal       # gas_limit * buffered gas price
    safety_margin: Decimal
    congestion_buffer: Decimal
    total: Decimal
    gas_limit: int = 0
    gas_price: int = 0          # buffered, wei

    def __post_init__(self):
        for name in ("base_fee", "gas_estimate", "safety_margin", "congestion_buffer"):
            if getattr(self, name) < ZERO:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.total < self.base_fee:
            raise ValueError("total must be at least the base fee")


@dataclass(frozen=True)
class Sufficiency:
    """Outcome of a funds check."""
    sufficient: bool
    required: Decimal
    available: Decimal
    shortfall: Decimal
    quote: Optional[FeeQuote] = None


class FeePolicy:
    """Maps actions to costs and gates submissions on the live balance."""

    def __init__(self, settings: Settings, oracle: BalanceOracle, clock: Clock = SYSTEM_CLOCK):
        self.settings = settings
        self.oracle = oracle
        self.clock = clock

    def payload_size(
        self, action: ActionKind, payload: Optional[dict[str, Any]] = None, signer: Optional[str] = None
    ) -> int:
        """Size of the encoded record the submitter will embed."""
        record = build_action_record(
            action,
            payload,
            signer=signer or _SIZING_SIGNER,
            attempt=self.settings.max_attempts,
            timestamp_ms=self.clock.now_ms(),
        )
        return len(encode_action_record(record))

    def quote_for_gas_price(
        self,
        action: ActionKind,
        gas_price_wei: int,
        payload: Optional[dict[str, Any]] = None,
        signer: Optional[str] = None,
    ) -> FeeQuote:
        """Build a quote from an already fetched network gas price."""
        action = ActionKind(action)
        base_fee = self.settings.base_fee(action)
        gas_limit = estimate_gas_limit(self.payload_size(action, payload, signer), self.settings)
        gas_price = buffered_gas_price(gas_price_wei, self.settings)
        gas_estimate = Decimal(str(Web3.from_wei(gas_limit * gas_price, "ether")))
        safety_margin = self.settings.safety_margin
        congestion_buffer = self.settings.congestion_buffer
        return FeeQuote(
            action=action,
            base_fee=base_fee,
            gas_estimate=gas_estimate,
            safety_margin=safety_margin,
            congestion_buffer=congestion_buffer,
            total=base_fee + gas_estimate + safety_margin + congestion_buffer,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

    async def quote(
        self, action: ActionKind, payload: Optional[dict[str, Any]] = None, signer: Optional[str] = None
    ) -> FeeQuote:
        """Quote an action against the live gas price. Never cached."""
        gas_price_wei = await self.oracle.gas_price()
        return self.quote_for_gas_price(action, gas_price_wei, payload, signer)

    @staticmethod
    def evaluate(required: Decimal, available: Decimal, quote: Optional[FeeQuote] = None) -> Sufficiency:
        """Compare a requirement with a balance. ``available == required`` is sufficient."""
        shortfall = max(ZERO, required - available)
        return Sufficiency(
            sufficient=shortfall == ZERO,
            required=required,
            available=available,
            shortfall=shortfall,
            quote=quote,
        )

    async def sufficiency(
        self,
        identity: Union["Identity", str],
        action: ActionKind,
        payload: Optional[dict[str, Any]] = None,
    ) -> Sufficiency:
        """Fresh funds check for one action.

        Queries the balance oracle exactly once and the gas price once.

        Raises:
            OracleUnavailable: If the ledger cannot be reached
        """
        address = getattr(identity, "public_address", identity)
        available = await self.oracle.balance_of(address)
        quote = await self.quote(action, payload, signer=address)
        result = self.evaluate(quote.total, available, quote)
        logger.debug(
            f"Funds check for {ActionKind(action).value}: required {result.required}, "
            f"available {result.available}, shortfall {result.shortfall}"
        )
        return result
