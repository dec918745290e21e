"""Snapshot publisher - fans an enriched snapshot out to Redis.

Per market, every published snapshot produces five writes:

    PUBLISH orderbook_{type}_{index}                          full snapshot
    SET     last_update_orderbook_{type}_{index}              full snapshot
    SET     last_update_orderbook_{type}_{index}_depth_100    top 100 levels
    SET     last_update_orderbook_{type}_{index}_depth_20     top 20 levels
    SET     last_update_orderbook_{type}_{index}_depth_5      top 5 levels

The writes run concurrently and fail independently. A failed write is logged
and counted, never retried here.
"""

import asyncio
from typing import Any, Awaitable

import structlog

from dlob_publisher.core.sink import RedisSink
from dlob_publisher.domain.market import MarketDescriptor
from dlob_publisher.domain.orderbook import FormattedSnapshot

log = structlog.get_logger()

PROJECTION_DEPTHS = (100, 20, 5)


class SnapshotPublisher:
    """Writes enriched snapshots to the pub/sub channel and latest-value keys."""

    def __init__(self, sink: RedisSink, metrics=None) -> None:
        self._sink = sink
        self._metrics = metrics
        self._log = log.bind(component="snapshot_publisher")

    def build_writes(
        self,
        descriptor: MarketDescriptor,
        snapshot: FormattedSnapshot,
    ) -> list[tuple[str, str, dict[str, Any]]]:
        """List the (operation, destination, payload) triples for a snapshot."""
        full = snapshot.to_payload()
        writes = [
            ("publish", descriptor.channel, full),
            ("set", descriptor.latest_key, full),
        ]
        for depth in PROJECTION_DEPTHS:
            writes.append(
                ("set", descriptor.depth_key(depth), snapshot.truncated(depth).to_payload())
            )
        return writes

    async def publish(
        self,
        descriptor: MarketDescriptor,
        snapshot: FormattedSnapshot,
    ) -> list[str]:
        """Write the snapshot to every destination.

        Returns:
            Destinations whose write failed (empty on full success).
        """
        writes = self.build_writes(descriptor, snapshot)
        calls: list[Awaitable[Any]] = []
        for operation, destination, payload in writes:
            if operation == "publish":
                calls.append(self._sink.publish(destination, payload))
            else:
                calls.append(self._sink.set(destination, payload))

        results = await asyncio.gather(*calls, return_exceptions=True)

        failed: list[str] = []
        for (operation, destination, _), result in zip(writes, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(destination)
                self._record_failure(descriptor, operation, destination, result)

        if failed:
            self._log.warning(
                "snapshot_partially_published",
                market=descriptor.market_name,
                failed=failed,
                succeeded=len(writes) - len(failed),
            )
        else:
            self._log.debug(
                "snapshot_published",
                market=descriptor.market_name,
                channel=descriptor.channel,
                slot=snapshot.slot,
                bids=len(snapshot.bids),
                asks=len(snapshot.asks),
            )
        return failed

    def _record_failure(
        self,
        descriptor: MarketDescriptor,
        operation: str,
        destination: str,
        error: BaseException,
    ) -> None:
        self._log.error(
            "sink_write_failed",
            market=descriptor.market_name,
            market_type=descriptor.market_type.value,
            market_index=descriptor.market_index,
            operation=operation,
            destination=destination,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._metrics is not None:
            self._metrics.record_sink_error(operation)
