"""DLOB publisher service - runs the snapshot pipeline for every market.

One refresh cycle processes each configured market once:

    upstream L2 + oracle + market slot
        -> format (group, truncate, stringify)
        -> enrich (market, book slot, oracle, market slot)
        -> consistency checks (may raise FatalCondition)
        -> change gate
        -> publish (channel + latest-value keys)

Markets run concurrently, each under its own lock from the state table.
Anything that goes wrong for one market is logged and counted, and the other
markets carry on. A FatalCondition is different: it cancels every market of
the cycle that has not published yet and then leaves run_cycle.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

import structlog

from dlob_publisher.core.retry import FatalCondition, UpstreamError
from dlob_publisher.domain.market import MarketPublishConfig
from dlob_publisher.integrations.source import OrderBookSource
from dlob_publisher.services.change_detector import ChangeDetector
from dlob_publisher.services.consistency import ConsistencyMonitor, wall_clock_ms
from dlob_publisher.services.formatter import format_snapshot
from dlob_publisher.services.publisher import SnapshotPublisher

log = structlog.get_logger()


class MarketOutcome(str, Enum):
    """What happened to one market in one cycle."""

    PUBLISHED = "published"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class CycleReport:
    """Summary of one refresh cycle."""

    published: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.published) + len(self.unchanged) + len(self.failed)


@dataclass
class _CycleHalt:
    """Kill-switch state shared by the markets of one cycle."""

    tasks: list[asyncio.Task] = field(default_factory=list)
    fatal: Optional[FatalCondition] = None

    def trip(self, fatal: FatalCondition) -> None:
        """Record the first fatal condition and cancel the other markets."""
        if self.fatal is None:
            self.fatal = fatal
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current and not task.done():
                task.cancel()


class DLOBPublisherService:
    """Drives formatting, consistency checks and publication per market.

    Usage:
        service = DLOBPublisherService(
            markets=build_market_configs(config, source),
            source=source,
            monitor=ConsistencyMonitor(state_table),
            detector=ChangeDetector(state_table),
            publisher=SnapshotPublisher(sink),
        )
        report = await service.run_cycle()
    """

    def __init__(
        self,
        markets: Sequence[MarketPublishConfig],
        source: OrderBookSource,
        monitor: ConsistencyMonitor,
        detector: ChangeDetector,
        publisher: SnapshotPublisher,
        metrics=None,
        now_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._markets = list(markets)
        self._source = source
        self._monitor = monitor
        self._detector = detector
        self._publisher = publisher
        self._metrics = metrics
        self._now_ms = now_ms or wall_clock_ms
        self._log = log.bind(component="dlob_service")

    @property
    def markets(self) -> list[MarketPublishConfig]:
        return list(self._markets)

    async def run_cycle(self) -> CycleReport:
        """Process every configured market once.

        Raises:
            FatalCondition: A market tripped a kill switch. Markets that had
                not published by then are cancelled and write nothing.
        """
        started = time.perf_counter()
        halt = _CycleHalt()
        halt.tasks = [
            asyncio.create_task(self._process_market(market, halt))
            for market in self._markets
        ]
        results = await asyncio.gather(*halt.tasks, return_exceptions=True)

        report = CycleReport()
        for market, result in zip(self._markets, results):
            name = market.market_name
            if isinstance(result, FatalCondition):
                report.failed.append(name)
            elif isinstance(result, asyncio.CancelledError):
                if halt.fatal is None:
                    raise result
                report.failed.append(name)
            elif isinstance(result, Exception):
                self._market_failed(market, "unknown", result)
                report.failed.append(name)
            elif isinstance(result, BaseException):
                raise result
            elif result == MarketOutcome.PUBLISHED:
                report.published.append(name)
            elif result == MarketOutcome.UNCHANGED:
                report.unchanged.append(name)
            else:
                report.failed.append(name)

        report.duration_seconds = time.perf_counter() - started
        if self._metrics is not None:
            self._metrics.record_cycle_duration(report.duration_seconds)

        if halt.fatal is not None:
            raise halt.fatal

        self._log.debug(
            "cycle_completed",
            published=len(report.published),
            unchanged=len(report.unchanged),
            failed=len(report.failed),
            duration_ms=round(report.duration_seconds * 1000, 3),
        )
        return report

    async def _process_market(
        self, market: MarketPublishConfig, halt: _CycleHalt
    ) -> MarketOutcome:
        descriptor = market.descriptor
        async with self._monitor.state_table.lock(descriptor.key):
            stage = "upstream"
            try:
                raw = self._source.get_l2(market)
                oracle = self._source.get_oracle_data(
                    descriptor.market_type, descriptor.market_index
                )
                market_slot = self._source.get_market_slot(
                    descriptor.market_type, descriptor.market_index
                )

                stage = "format"
                formatted = format_snapshot(raw, market.grouping, market.depth)
                enriched = (
                    formatted.with_market(descriptor, self._now_ms())
                    .with_slot(raw.slot)
                    .with_oracle(oracle)
                    .with_market_slot(market_slot)
                )
            except Exception as e:
                error: Exception = e
                if stage == "upstream":
                    error = UpstreamError(f"upstream read failed for {descriptor}", cause=e)
                return self._market_failed(market, stage, error)

            try:
                self._monitor.check(
                    descriptor,
                    book_slot=raw.slot,
                    oracle_slot=oracle.slot,
                    market_slot=market_slot,
                )
            except FatalCondition as e:
                halt.trip(e)
                raise

            if not self._detector.should_publish(descriptor, formatted, market.publish_mode):
                if self._metrics is not None:
                    self._metrics.record_unchanged(descriptor)
                return MarketOutcome.UNCHANGED

            failed = await self._publisher.publish(descriptor, enriched)
            if failed:
                if self._metrics is not None:
                    self._metrics.record_market_error(descriptor, "sink")
                return MarketOutcome.FAILED

            if self._metrics is not None:
                self._metrics.record_published(descriptor)
            return MarketOutcome.PUBLISHED

    def _market_failed(
        self,
        market: MarketPublishConfig,
        stage: str,
        error: Exception,
    ) -> MarketOutcome:
        self._log.error(
            "market_cycle_failed",
            market=market.market_name,
            market_type=market.market_type.value,
            market_index=market.market_index,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._metrics is not None:
            self._metrics.record_market_error(market.descriptor, stage)
        return MarketOutcome.FAILED
