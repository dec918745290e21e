"""Unit tests for the consistency monitor and per-market state table."""

import asyncio
from unittest.mock import MagicMock

import pytest

from dlob_publisher.core.retry import (
    FatalCondition,
    MarketSlotStaleError,
    SlotDivergenceError,
)
from dlob_publisher.domain.market import MarketDescriptor, MarketType
from dlob_publisher.services.consistency import (
    DEFAULT_PERP_STALENESS_MS,
    DEFAULT_SPOT_STALENESS_MS,
    ConsistencyMonitor,
    LastSeenState,
    MarketStateTable,
)


@pytest.fixture
def perp():
    return MarketDescriptor(market_index=3, market_type=MarketType.PERP, market_name="SOL-PERP")


@pytest.fixture
def spot():
    return MarketDescriptor(market_index=1, market_type=MarketType.SPOT, market_name="SOL")


@pytest.fixture
def table():
    return MarketStateTable()


@pytest.fixture
def monitor(table, clock):
    return ConsistencyMonitor(
        table,
        slot_diff_threshold=200,
        perp_staleness_ms=60_000,
        spot_staleness_ms=120_000,
        now_ms=clock,
    )


class TestMarketStateTable:
    """Tests for the per-market state table."""

    def test_get_or_create_is_lazy(self, table):
        """Entries appear only when first requested."""
        key = (MarketType.PERP, 0)
        assert table.get(key) is None
        assert key not in table

        state = table.get_or_create(key)

        assert isinstance(state, LastSeenState)
        assert table.get_or_create(key) is state
        assert len(table) == 1
        assert list(table) == [key]

    def test_new_state_is_unseeded(self):
        """A fresh entry has no slot, time or digest."""
        state = LastSeenState()
        assert not state.is_seeded
        assert state.last_formatted_hash is None

    def test_locks_are_per_market(self, table):
        """Each market gets its own lock, reused across calls."""
        perp_lock = table.lock((MarketType.PERP, 0))
        spot_lock = table.lock((MarketType.SPOT, 0))

        assert perp_lock is table.lock((MarketType.PERP, 0))
        assert perp_lock is not spot_lock

    def test_lock_does_not_create_state(self, table):
        """Locking a market does not add a state entry."""
        table.lock((MarketType.PERP, 9))
        assert (MarketType.PERP, 9) not in table

    @pytest.mark.asyncio
    async def test_one_market_locked_does_not_block_another(self, table):
        """Holding one market's lock leaves other markets free."""
        async with table.lock((MarketType.PERP, 0)):
            other = table.lock((MarketType.PERP, 1))
            await asyncio.wait_for(other.acquire(), timeout=1.0)
            other.release()


class TestSlotDivergence:
    """Tests for the book/oracle slot divergence kill switch."""

    def test_within_threshold_survives(self, monitor, perp):
        """Book 1000 / oracle 1150 is within 200."""
        monitor.check(perp, book_slot=1_000, oracle_slot=1_150, market_slot=7)

    def test_at_threshold_survives(self, monitor, perp):
        """A difference equal to the threshold is allowed."""
        monitor.check(perp, book_slot=1_000, oracle_slot=1_200, market_slot=7)

    def test_beyond_threshold_kills(self, monitor, perp):
        """Book 1000 / oracle 1250 trips the kill switch."""
        with pytest.raises(SlotDivergenceError) as exc_info:
            monitor.check(perp, book_slot=1_000, oracle_slot=1_250, market_slot=7)

        error = exc_info.value
        assert isinstance(error, FatalCondition)
        assert error.condition == "slot_divergence"
        assert error.market_name == "SOL-PERP"
        assert error.book_slot == 1_000
        assert error.oracle_slot == 1_250
        assert error.to_log_context()["slot_diff"] == 250

    def test_oracle_behind_book_kills(self, monitor, perp):
        """Divergence is measured in both directions."""
        with pytest.raises(SlotDivergenceError):
            monitor.check(perp, book_slot=1_500, oracle_slot=1_000, market_slot=7)

    def test_divergence_does_not_touch_state(self, monitor, table, perp):
        """A divergent snapshot does not seed the market slot."""
        with pytest.raises(SlotDivergenceError):
            monitor.check(perp, book_slot=1_000, oracle_slot=2_000, market_slot=7)

        assert table.get(perp.key) is None

    def test_zero_threshold(self, table, perp, clock):
        """Threshold 0 allows only identical slots."""
        monitor = ConsistencyMonitor(table, slot_diff_threshold=0, now_ms=clock)

        monitor.check(perp, book_slot=5, oracle_slot=5, market_slot=1)
        with pytest.raises(SlotDivergenceError):
            monitor.check(perp, book_slot=5, oracle_slot=6, market_slot=1)


class TestMarketSlotStaleness:
    """Tests for the market slot staleness kill switch."""

    def test_first_observation_seeds(self, monitor, table, perp, clock):
        """The first snapshot records the market slot and the time."""
        state = monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)

        assert state is table.get(perp.key)
        assert state.last_market_slot == 7
        assert state.last_market_slot_observed_at == clock.now

    def test_unchanged_within_window_survives(self, monitor, perp, clock):
        """Same slot inside the window is fine and keeps the original time."""
        seeded_at = clock.now
        monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)

        clock.advance(60_000)
        state = monitor.check(perp, book_slot=1_001, oracle_slot=1_001, market_slot=7)

        assert state.last_market_slot_observed_at == seeded_at

    def test_unchanged_beyond_window_kills(self, monitor, perp, clock):
        """Same slot past the window trips the kill switch."""
        monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)

        clock.advance(60_001)
        with pytest.raises(MarketSlotStaleError) as exc_info:
            monitor.check(perp, book_slot=1_002, oracle_slot=1_002, market_slot=7)

        error = exc_info.value
        assert error.condition == "market_slot_stale"
        assert error.market_slot == 7
        assert error.elapsed_ms == 60_001
        assert error.threshold_ms == 60_000

    def test_change_resets_clock(self, monitor, perp, clock):
        """A new market slot restarts the staleness window."""
        monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)
        clock.advance(50_000)
        state = monitor.check(perp, book_slot=1_001, oracle_slot=1_001, market_slot=8)

        assert state.last_market_slot == 8
        assert state.last_market_slot_observed_at == clock.now

        clock.advance(50_000)
        monitor.check(perp, book_slot=1_002, oracle_slot=1_002, market_slot=8)

    def test_spot_uses_its_own_window(self, monitor, spot, clock):
        """Spot markets tolerate their longer window."""
        monitor.check(spot, book_slot=1_000, oracle_slot=1_000, market_slot=3)

        clock.advance(90_000)
        monitor.check(spot, book_slot=1_000, oracle_slot=1_000, market_slot=3)

        clock.advance(30_001)
        with pytest.raises(MarketSlotStaleError):
            monitor.check(spot, book_slot=1_000, oracle_slot=1_000, market_slot=3)

    def test_markets_tracked_independently(self, monitor, perp, spot, clock):
        """One market's slot history does not affect another's."""
        monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)
        clock.advance(59_000)
        monitor.check(spot, book_slot=1_000, oracle_slot=1_000, market_slot=7)

        clock.advance(2_000)
        with pytest.raises(MarketSlotStaleError):
            monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)
        monitor.check(spot, book_slot=1_000, oracle_slot=1_000, market_slot=7)


class TestMonitorConfiguration:
    """Tests for defaults and metric hooks."""

    def test_default_windows(self, table):
        """Defaults are ten minutes for perps and twenty for spot."""
        monitor = ConsistencyMonitor(table)

        assert monitor.slot_diff_threshold == 200
        assert monitor.staleness_threshold_ms(MarketType.PERP) == DEFAULT_PERP_STALENESS_MS
        assert monitor.staleness_threshold_ms(MarketType.SPOT) == DEFAULT_SPOT_STALENESS_MS
        assert DEFAULT_PERP_STALENESS_MS == 600_000
        assert DEFAULT_SPOT_STALENESS_MS == 1_200_000

    def test_records_metrics(self, table, perp, clock):
        """Slot diff and slot age are reported to the metrics emitter."""
        metrics = MagicMock()
        monitor = ConsistencyMonitor(table, now_ms=clock, metrics=metrics)

        monitor.check(perp, book_slot=1_000, oracle_slot=1_150, market_slot=7)
        clock.advance(1_500)
        monitor.check(perp, book_slot=1_000, oracle_slot=1_000, market_slot=7)

        metrics.record_slot_diff.assert_any_call(perp, 150)
        metrics.record_market_slot_age.assert_called_with(perp, 1.5)
