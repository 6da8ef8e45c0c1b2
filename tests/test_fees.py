"""Tests for the fee policy."""

from decimal import Decimal

import pytest

from sessionwallet.exceptions import OracleUnavailable
from sessionwallet.pipeline.actions import ActionKind
from sessionwallet.pipeline.fees import FeePolicy, FeeQuote, buffered_gas_price, estimate_gas_limit
from sessionwallet.pipeline.oracle import BalanceOracle
from sessionwallet.rpc.pool import EndpointPool

from conftest import GWEI, OWNER, FakeClock, FakeLedger, make_settings, wei

REQUIRED = Decimal("0.000068")


def policy_for(ledger: FakeLedger, **overrides) -> FeePolicy:
    settings = make_settings(**overrides)
    return FeePolicy(settings, BalanceOracle(EndpointPool([ledger])), FakeClock())


class TestGasHeuristics:
    """Tests for the shared gas sizing helpers."""

    def test_gas_limit_counts_words_and_margin(self):
        settings = make_settings(
            base_gas_units=21000, gas_units_per_word=512, gas_safety_units=5000, gas_limit_margin_pct=20
        )

        # 100 bytes -> 4 words
        assert estimate_gas_limit(100, settings) == 33658
        assert estimate_gas_limit(0, settings) == 31200

    def test_buffered_price_rounds_up(self):
        settings = make_settings(gas_price_buffer=1.1)

        assert buffered_gas_price(1_000_000_001, settings) == 1_100_000_002

    def test_buffer_must_not_shrink_price(self):
        with pytest.raises(ValueError):
            make_settings(gas_price_buffer=0.9)


class TestFeeQuote:
    """Tests for quote composition."""

    @pytest.mark.asyncio
    async def test_place_block_quote(self):
        quote = await policy_for(FakeLedger(gas_price=2 * GWEI)).quote(ActionKind.PLACE_BLOCK)

        assert quote.base_fee == Decimal("0.000008")
        assert quote.gas_estimate == Decimal("0.00004")
        assert quote.total == REQUIRED
        assert quote.gas_limit == 20000
        assert quote.gas_price == 2 * GWEI

    @pytest.mark.asyncio
    async def test_quote_is_not_cached(self):
        ledger = FakeLedger(gas_price=2 * GWEI)
        policy = policy_for(ledger)

        first = await policy.quote(ActionKind.CLEAR_LINE)
        ledger.gas_price = 4 * GWEI
        second = await policy.quote(ActionKind.CLEAR_LINE)

        assert second.gas_estimate == first.gas_estimate * 2

    def test_total_never_below_base_fee(self):
        with pytest.raises(ValueError):
            FeeQuote(
                action=ActionKind.NEW_GAME,
                base_fee=Decimal("1"),
                gas_estimate=Decimal("0"),
                safety_margin=Decimal("0"),
                congestion_buffer=Decimal("0"),
                total=Decimal("0.5"),
            )

    def test_negative_component_rejected(self):
        with pytest.raises(ValueError):
            FeeQuote(
                action=ActionKind.NEW_GAME,
                base_fee=Decimal("1"),
                gas_estimate=Decimal("-1"),
                safety_margin=Decimal("0"),
                congestion_buffer=Decimal("0"),
                total=Decimal("1"),
            )

    def test_every_action_has_a_fee(self):
        settings = make_settings()
        for action in ActionKind:
            assert settings.base_fee(action) > 0


class TestSufficiency:
    """Tests for the funds gate."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "available, sufficient, shortfall",
        [
            ("0", False, "0.000068"),
            ("0.000068", True, "0"),
            ("0.000067", False, "0.000001"),
            ("0.0005", True, "0"),
            ("0.00002", False, "0.000048"),
        ],
    )
    async def test_shortfall_is_required_minus_available(self, available, sufficient, shortfall):
        policy = policy_for(FakeLedger(balance_wei=wei(available), gas_price=2 * GWEI))

        check = await policy.sufficiency(OWNER, ActionKind.PLACE_BLOCK)

        assert check.required == REQUIRED
        assert check.available == Decimal(available)
        assert check.sufficient is sufficient
        assert check.shortfall == Decimal(shortfall)

    @pytest.mark.asyncio
    async def test_reads_balance_once(self):
        ledger = FakeLedger(balance_wei=wei("1"))

        await policy_for(ledger).sufficiency(OWNER, ActionKind.GAME_OVER, {"score": 10})

        assert ledger.count("get_balance") == 1
        assert ledger.count("get_gas_price") == 1

    @pytest.mark.asyncio
    async def test_unreachable_ledger(self):
        ledger = FakeLedger(fail=("get_balance",))

        with pytest.raises(OracleUnavailable):
            await policy_for(ledger).sufficiency(OWNER, ActionKind.PLACE_BLOCK)
