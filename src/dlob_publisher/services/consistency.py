"""Consistency monitor - per-market state table and kill-switch checks.

Two conditions make the process unfit to keep serving order books:

1. Slot divergence: the book was built at a slot too far from the oracle's
   slot for the same market. The book is computed from state that no longer
   matches the chain, and serving it is worse than serving nothing.
2. Market slot staleness: the market account's slot has not moved for longer
   than the staleness window for its class, even though snapshots are still
   arriving.

Either one raises a FatalCondition. The monitor never exits the process
itself; the application run loop does that in one place.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

import structlog

from dlob_publisher.core.retry import MarketSlotStaleError, SlotDivergenceError
from dlob_publisher.domain.market import MarketDescriptor, MarketKey, MarketType

log = structlog.get_logger()

DEFAULT_SLOT_DIFF_THRESHOLD = 200
DEFAULT_PERP_STALENESS_MS = 10 * 60 * 1000
DEFAULT_SPOT_STALENESS_MS = 20 * 60 * 1000


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class LastSeenState:
    """What the publisher last saw for one market.

    Attributes:
        last_formatted_hash: Digest of the last published ladder.
        last_market_slot: Market slot at the last observed change.
        last_market_slot_observed_at: Wall-clock ms when last_market_slot
            changed. Not refreshed when the same slot is seen again.
    """

    last_formatted_hash: Optional[str] = None
    last_market_slot: Optional[int] = None
    last_market_slot_observed_at: Optional[int] = None

    @property
    def is_seeded(self) -> bool:
        return self.last_market_slot is not None


class MarketStateTable:
    """Per-market LastSeenState entries plus one lock per market.

    Entries are created lazily, one per (market_type, market_index). Locks
    exist independently of entries so a market can be locked before its
    first snapshot has been formatted.
    """

    def __init__(self) -> None:
        self._states: dict[MarketKey, LastSeenState] = {}
        self._locks: dict[MarketKey, asyncio.Lock] = {}

    def get(self, key: MarketKey) -> Optional[LastSeenState]:
        return self._states.get(key)

    def get_or_create(self, key: MarketKey) -> LastSeenState:
        state = self._states.get(key)
        if state is None:
            state = LastSeenState()
            self._states[key] = state
        return state

    def lock(self, key: MarketKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __contains__(self, key: object) -> bool:
        return key in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[MarketKey]:
        return iter(self._states)


class ConsistencyMonitor:
    """Runs the slot divergence and staleness checks for each snapshot.

    Usage:
        monitor = ConsistencyMonitor(MarketStateTable(), slot_diff_threshold=200)
        monitor.check(descriptor, book_slot=1000, oracle_slot=1150, market_slot=7)
    """

    def __init__(
        self,
        state_table: MarketStateTable,
        slot_diff_threshold: int = DEFAULT_SLOT_DIFF_THRESHOLD,
        perp_staleness_ms: int = DEFAULT_PERP_STALENESS_MS,
        spot_staleness_ms: int = DEFAULT_SPOT_STALENESS_MS,
        now_ms: Optional[Callable[[], int]] = None,
        metrics=None,
    ) -> None:
        """Initialize the monitor.

        Args:
            state_table: Shared per-market state.
            slot_diff_threshold: Max allowed |book slot - oracle slot|.
            perp_staleness_ms: Max time a perp market slot may stay unchanged.
            spot_staleness_ms: Max time a spot market slot may stay unchanged.
            now_ms: Wall-clock source in milliseconds.
            metrics: Optional MetricsEmitter.
        """
        self._states = state_table
        self._slot_diff_threshold = slot_diff_threshold
        self._staleness_ms = {
            MarketType.PERP: perp_staleness_ms,
            MarketType.SPOT: spot_staleness_ms,
        }
        self._now_ms = now_ms or wall_clock_ms
        self._metrics = metrics
        self._log = log.bind(component="consistency_monitor")

    @property
    def state_table(self) -> MarketStateTable:
        return self._states

    @property
    def slot_diff_threshold(self) -> int:
        return self._slot_diff_threshold

    def staleness_threshold_ms(self, market_type: MarketType) -> int:
        return self._staleness_ms[market_type]

    def check(
        self,
        descriptor: MarketDescriptor,
        book_slot: int,
        oracle_slot: int,
        market_slot: int,
    ) -> LastSeenState:
        """Run both kill-switch checks and advance the market slot clock.

        Returns:
            The market's state after the update.

        Raises:
            SlotDivergenceError: Book and oracle slots differ by more than the threshold.
            MarketSlotStaleError: Market slot frozen for longer than the staleness window.
        """
        self._check_slot_divergence(descriptor, book_slot, oracle_slot)
        return self._check_market_slot(descriptor, book_slot, market_slot)

    def _check_slot_divergence(
        self,
        descriptor: MarketDescriptor,
        book_slot: int,
        oracle_slot: int,
    ) -> None:
        slot_diff = abs(book_slot - oracle_slot)
        if self._metrics is not None:
            self._metrics.record_slot_diff(descriptor, slot_diff)

        if slot_diff > self._slot_diff_threshold:
            raise SlotDivergenceError(
                market_name=descriptor.market_name,
                market_type=descriptor.market_type.value,
                market_index=descriptor.market_index,
                book_slot=book_slot,
                oracle_slot=oracle_slot,
                threshold=self._slot_diff_threshold,
            )

    def _check_market_slot(
        self,
        descriptor: MarketDescriptor,
        book_slot: int,
        market_slot: int,
    ) -> LastSeenState:
        now = self._now_ms()
        state = self._states.get_or_create(descriptor.key)

        if not state.is_seeded:
            state.last_market_slot = market_slot
            state.last_market_slot_observed_at = now
            self._log.info(
                "market_slot_seeded",
                market=descriptor.market_name,
                market_slot=market_slot,
            )
            self._record_age(descriptor, 0)
            return state

        assert state.last_market_slot_observed_at is not None
        elapsed = now - state.last_market_slot_observed_at

        if market_slot == state.last_market_slot:
            self._record_age(descriptor, elapsed)
            threshold = self.staleness_threshold_ms(descriptor.market_type)
            if elapsed > threshold:
                raise MarketSlotStaleError(
                    market_name=descriptor.market_name,
                    market_type=descriptor.market_type.value,
                    market_index=descriptor.market_index,
                    book_slot=book_slot,
                    market_slot=market_slot,
                    elapsed_ms=elapsed,
                    threshold_ms=threshold,
                )
            return state

        self._log.debug(
            "market_slot_advanced",
            market=descriptor.market_name,
            previous_slot=state.last_market_slot,
            market_slot=market_slot,
        )
        state.last_market_slot = market_slot
        state.last_market_slot_observed_at = now
        self._record_age(descriptor, 0)
        return state

    def _record_age(self, descriptor: MarketDescriptor, age_ms: int) -> None:
        if self._metrics is not None:
            self._metrics.record_market_slot_age(descriptor, age_ms / 1000.0)
