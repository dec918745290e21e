"""
Prometheus metrics emission for the publisher.

All metrics use the 'dlob_' prefix and live in an isolated registry that the
health server exposes on /metrics.
"""
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from dlob_publisher import __version__
from dlob_publisher.domain.market import MarketDescriptor


class MetricsEmitter:
    """Prometheus metrics emission (emit only, no reading).

    Usage:
        emitter = MetricsEmitter()
        emitter.record_published(descriptor)
        emitter.record_cycle_duration(0.012)
        metrics_output = emitter.get_metrics()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Initialize MetricsEmitter.

        Args:
            registry: Optional custom registry (a fresh one if not provided)
        """
        self._registry = registry or CollectorRegistry()

        self._info = Info(
            "dlob_publisher",
            "DLOB publisher information",
            registry=self._registry,
        )
        self._info.info({
            "version": __version__,
            "component": "dlob_publisher",
        })

        self._uptime = Gauge(
            "dlob_uptime_seconds",
            "Process uptime in seconds",
            registry=self._registry,
        )

        self._redis_connected = Gauge(
            "dlob_redis_connected",
            "Redis connection status (1=connected, 0=disconnected)",
            registry=self._registry,
        )

        # Publication
        self._published_total = Counter(
            "dlob_snapshots_published_total",
            "Snapshots published per market",
            ["market", "market_type"],
            registry=self._registry,
        )

        self._unchanged_total = Counter(
            "dlob_snapshots_unchanged_total",
            "Snapshots suppressed because the ladder did not change",
            ["market", "market_type"],
            registry=self._registry,
        )

        # Errors
        self._market_errors_total = Counter(
            "dlob_market_errors_total",
            "Recoverable per-market pipeline errors",
            ["market", "market_type", "stage"],
            registry=self._registry,
        )

        self._sink_errors_total = Counter(
            "dlob_sink_errors_total",
            "Failed Redis writes",
            ["operation"],
            registry=self._registry,
        )

        self._kill_switch_total = Counter(
            "dlob_kill_switch_total",
            "Kill switch activations",
            ["condition"],
            registry=self._registry,
        )

        # Consistency
        self._slot_diff = Gauge(
            "dlob_book_oracle_slot_diff",
            "Absolute difference between book slot and oracle slot",
            ["market", "market_type"],
            registry=self._registry,
        )

        self._market_slot_age = Gauge(
            "dlob_market_slot_age_seconds",
            "Time since the market slot last changed",
            ["market", "market_type"],
            registry=self._registry,
        )

        self._cycle_duration = Histogram(
            "dlob_cycle_duration_seconds",
            "Time to process one refresh cycle across all markets",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
            registry=self._registry,
        )

    @staticmethod
    def _labels(descriptor: MarketDescriptor) -> dict[str, str]:
        return {
            "market": descriptor.market_name,
            "market_type": descriptor.market_type.value,
        }

    def record_published(self, descriptor: MarketDescriptor) -> None:
        self._published_total.labels(**self._labels(descriptor)).inc()

    def record_unchanged(self, descriptor: MarketDescriptor) -> None:
        self._unchanged_total.labels(**self._labels(descriptor)).inc()

    def record_market_error(self, descriptor: MarketDescriptor, stage: str) -> None:
        self._market_errors_total.labels(stage=stage, **self._labels(descriptor)).inc()

    def record_sink_error(self, operation: str) -> None:
        self._sink_errors_total.labels(operation=operation).inc()

    def record_kill_switch(self, condition: str) -> None:
        self._kill_switch_total.labels(condition=condition).inc()

    def record_slot_diff(self, descriptor: MarketDescriptor, slot_diff: int) -> None:
        self._slot_diff.labels(**self._labels(descriptor)).set(slot_diff)

    def record_market_slot_age(self, descriptor: MarketDescriptor, age_seconds: float) -> None:
        self._market_slot_age.labels(**self._labels(descriptor)).set(age_seconds)

    def record_cycle_duration(self, seconds: float) -> None:
        self._cycle_duration.observe(seconds)

    def update_uptime(self, seconds: float) -> None:
        self._uptime.set(seconds)

    def set_redis_connected(self, connected: bool) -> None:
        self._redis_connected.set(1 if connected else 0)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus text format."""
        return generate_latest(self._registry).decode("utf-8")

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry
