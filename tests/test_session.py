"""Tests for the session controller."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from sessionwallet.factory import create_session
from sessionwallet.pipeline.actions import ActionKind
from sessionwallet.pipeline.status import StatusKind
from sessionwallet.session import SessionController
from sessionwallet.storage import MemoryStore
from sessionwallet.utils.locks import get_identity_lock

from conftest import OWNER, FakeClock, FakeLedger, make_settings, settle, wei


@pytest_asyncio.fixture
async def session(ledger: FakeLedger, clock: FakeClock):
    controller = create_session(make_settings(), endpoints=[ledger], store=MemoryStore(), clock=clock)
    yield controller
    await controller.close()


class TestIdentityLifecycle:
    """Tests for init, reset and disconnect."""

    @pytest.mark.asyncio
    async def test_init_creates_then_reuses(self, session: SessionController):
        first = await session.init_identity(OWNER)
        second = await session.init_identity(OWNER)

        assert first is not None
        assert first == second
        assert session.get_status().address == first

    @pytest.mark.asyncio
    async def test_init_reads_balance(self, session: SessionController, ledger: FakeLedger):
        ledger.balance_wei = wei("0.002")

        await session.init_identity(OWNER)

        status = session.get_status()
        assert status.balance == Decimal("0.002")
        assert status.is_ready

    @pytest.mark.asyncio
    async def test_ready_requires_balance_above_threshold(self, session: SessionController, ledger: FakeLedger):
        ledger.balance_wei = wei("0.001")

        await session.init_identity(OWNER)

        assert not session.get_status().is_ready

    @pytest.mark.asyncio
    async def test_reset_twice(self, session: SessionController):
        await session.init_identity(OWNER)

        await session.reset_identity(OWNER)
        await session.reset_identity(OWNER)

        status = session.get_status()
        assert status.address is None
        assert status.last_error is None
        assert await session.key_store.get(OWNER) is None

    @pytest.mark.asyncio
    async def test_reset_then_init_creates_new_identity(self, session: SessionController):
        old = await session.init_identity(OWNER)
        await session.reset_identity(OWNER)

        assert await session.init_identity(OWNER) != old

    @pytest.mark.asyncio
    async def test_reset_waits_for_in_flight_submission(self, session: SessionController, ledger: FakeLedger):
        await session.init_identity(OWNER)
        ledger.send_gate = asyncio.Event()

        action = asyncio.create_task(session.execute_action("PlaceBlock"))
        await settle()
        reset = asyncio.create_task(session.reset_identity(OWNER))
        await settle()

        assert not reset.done()
        assert await session.key_store.get(OWNER) is not None
        # New work is refused while the reset is pending
        assert await session.execute_action("ClearLine") is False
        assert session.get_status().last_error == "Identity reset in progress"

        ledger.send_gate.set()
        assert await action is True
        await reset
        assert session.get_status().address is None
        assert await session.key_store.get(OWNER) is None

    @pytest.mark.asyncio
    async def test_disconnect_keeps_stored_identity(self, session: SessionController):
        address = await session.init_identity(OWNER)

        await session.disconnect()

        assert session.get_status().address is None
        assert (await session.key_store.get(OWNER)).public_address == address

    @pytest.mark.asyncio
    async def test_balance_failure_is_reported(self, session: SessionController, ledger: FakeLedger):
        ledger.fail.add("get_balance")

        address = await session.init_identity(OWNER)

        assert address is not None
        assert session.get_status().last_error.startswith("Failed to get balance")


class TestExecuteAction:
    """Tests for the single submission entry point."""

    @pytest.mark.asyncio
    async def test_without_identity(self, session: SessionController, ledger: FakeLedger):
        assert await session.execute_action(ActionKind.PLACE_BLOCK) is False
        assert session.get_status().last_error == "Session wallet not initialized"
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_unknown_action(self, session: SessionController):
        await session.init_identity(OWNER)

        assert await session.execute_action("Teleport") is False
        assert "Unknown action" in session.get_status().last_error

    @pytest.mark.asyncio
    async def test_success_updates_totals(self, session: SessionController):
        await session.init_identity(OWNER)

        assert await session.execute_action("PlaceBlock", {"x": 3, "y": 4}) is True

        status = session.get_status()
        assert status.totals.transactions == 1
        assert status.totals.spent == Decimal("0.00005")
        assert status.last_tx_hash is not None
        assert status.last_outcome.kind == StatusKind.SUCCESS
        assert status.last_error is None

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, session: SessionController, ledger: FakeLedger):
        ledger.balance_wei = wei("0.00002")
        await session.init_identity(OWNER)

        assert await session.execute_action("PlaceBlock") is False

        status = session.get_status()
        assert "shortfall 0.000048" in status.last_error
        assert status.totals.transactions == 0
        assert status.last_outcome.kind == StatusKind.FAILED
        assert ledger.count("send_raw_transaction") == 0

    @pytest.mark.asyncio
    async def test_timeout_reported_distinctly(self, session: SessionController, ledger: FakeLedger):
        ledger.default_lookup = "unknown"
        await session.init_identity(OWNER)

        assert await session.execute_action("GameOver", {"score": 10}) is False

        status = session.get_status()
        assert status.last_outcome.kind == StatusKind.TIMEOUT
        assert "may still be mined" in status.last_error

    @pytest.mark.asyncio
    async def test_back_to_back_calls_queue(self, session: SessionController, ledger: FakeLedger):
        """The second call waits in the queue and resolves after the first."""
        await session.init_identity(OWNER)
        ledger.send_gate = asyncio.Event()
        finished = []

        first = asyncio.create_task(session.execute_action("PlaceBlock"))
        second = asyncio.create_task(session.execute_action("ClearLine"))
        first.add_done_callback(lambda _: finished.append("first"))
        second.add_done_callback(lambda _: finished.append("second"))
        await settle()

        status = session.get_status()
        assert status.pending == ActionKind.PLACE_BLOCK
        assert status.queue_length == 1
        assert status.pending_count == 2

        ledger.send_gate.set()
        assert await asyncio.gather(first, second) == [True, True]
        assert finished == ["first", "second"]
        assert session.get_status().totals.transactions == 2

    @pytest.mark.asyncio
    async def test_balance_refreshed_after_success(self, session: SessionController, ledger: FakeLedger):
        ledger.balance_wei = wei("0.5")
        await session.init_identity(OWNER)
        ledger.balance_wei = wei("0.4")

        await session.execute_action("NewGame")
        await settle()

        assert session.get_status().balance == Decimal("0.4")

    @pytest.mark.asyncio
    async def test_totals_reset_with_identity(self, session: SessionController):
        await session.init_identity(OWNER)
        await session.execute_action("PlaceBlock")

        await session.reset_identity(OWNER)
        await session.init_identity(OWNER)

        assert session.get_status().totals.transactions == 0


class TestBackgroundRefresh:
    """Tests for the periodic balance refresher."""

    @pytest.mark.asyncio
    async def test_refresh_picks_up_deposit(self, ledger: FakeLedger):
        clock = FakeClock(auto_advance=False)
        session = create_session(
            make_settings(balance_refresh_interval=15, balance_refresh_min_spacing=5),
            endpoints=[ledger],
            store=MemoryStore(),
            clock=clock,
        )
        async with session:
            ledger.balance_wei = 0
            await session.init_identity(OWNER)
            assert not session.get_status().is_ready

            ledger.balance_wei = wei("0.01")
            await clock.advance(15)

            assert session.get_status().is_ready

    @pytest.mark.asyncio
    async def test_skipped_after_recent_refresh(self, ledger: FakeLedger):
        clock = FakeClock(auto_advance=False)
        session = create_session(
            make_settings(balance_refresh_interval=15, balance_refresh_min_spacing=5),
            endpoints=[ledger],
            store=MemoryStore(),
            clock=clock,
        )
        async with session:
            await session.init_identity(OWNER)
            await clock.advance(12)
            await session.refresh()
            reads = ledger.count("get_balance")

            # Timer fires at 15, three seconds after the manual refresh
            await clock.advance(3)
            assert ledger.count("get_balance") == reads

            await clock.advance(15)
            assert ledger.count("get_balance") == reads + 1


class TestLeaderboardRecording:
    """Tests for saving finished games."""

    @pytest.mark.asyncio
    async def test_record_score_uses_session_totals(self, session: SessionController):
        address = await session.init_identity(OWNER)
        await session.execute_action("PlaceBlock")

        rank = await session.record_score(120, level=3, blocks_placed=9)

        assert rank == 1
        best = await session.leaderboard.best(OWNER)
        assert best.session_address == address
        assert best.transactions == 1
        assert Decimal(best.gas_spent) == Decimal("0.00005")

    @pytest.mark.asyncio
    async def test_record_score_without_identity(self, session: SessionController):
        assert await session.record_score(10) is None


class YieldingStore(MemoryStore):
    """Memory store that hands control back to the loop on every call."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value):
        await asyncio.sleep(0)
        await super().set(key, value)

    async def remove(self, key):
        await asyncio.sleep(0)
        await super().remove(key)


class TestLifecycleSerialization:
    """Tests for overlapping init, reset and disconnect calls."""

    @pytest_asyncio.fixture
    async def slow_session(self, ledger: FakeLedger, clock: FakeClock):
        controller = create_session(make_settings(), endpoints=[ledger], store=YieldingStore(), clock=clock)
        yield controller
        await controller.close()

    @pytest.mark.asyncio
    async def test_reset_after_running_init_leaves_no_identity(self, slow_session: SessionController):
        init = asyncio.create_task(slow_session.init_identity(OWNER))
        await asyncio.sleep(0)

        await slow_session.reset_identity(OWNER)
        await init

        assert slow_session.get_status().address is None
        assert await slow_session.key_store.get(OWNER) is None

    @pytest.mark.asyncio
    async def test_concurrent_inits_share_one_identity(self, slow_session: SessionController):
        first, second = await asyncio.gather(
            slow_session.init_identity(OWNER), slow_session.init_identity(OWNER)
        )

        stored = await slow_session.key_store.get(OWNER)
        assert first == second == stored.public_address
        assert slow_session.get_status().address == stored.public_address

    @pytest.mark.asyncio
    async def test_reset_clears_previous_error(self, session: SessionController, ledger: FakeLedger):
        ledger.balance_wei = 0
        await session.init_identity(OWNER)
        await session.execute_action("PlaceBlock")
        assert session.get_status().last_error is not None

        await session.reset_identity(OWNER)

        assert session.get_status().last_error is None

    @pytest.mark.asyncio
    async def test_release_drops_identity_lock(self, session: SessionController):
        address = await session.init_identity(OWNER)
        await session.execute_action("PlaceBlock")
        lock = get_identity_lock(address)

        await session.disconnect()

        assert get_identity_lock(address) is not lock
