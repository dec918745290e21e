"""Services - snapshot pipeline stages and the per-market orchestrator."""

from dlob_publisher.services.change_detector import ChangeDetector
from dlob_publisher.services.consistency import (
    ConsistencyMonitor,
    LastSeenState,
    MarketStateTable,
)
from dlob_publisher.services.dlob_service import CycleReport, DLOBPublisherService
from dlob_publisher.services.formatter import format_snapshot
from dlob_publisher.services.health import HealthServer, HealthStatusCollector
from dlob_publisher.services.market_config import PublisherSettings, build_market_configs
from dlob_publisher.services.metrics import MetricsEmitter
from dlob_publisher.services.publisher import SnapshotPublisher

__all__ = [
    "ChangeDetector",
    "ConsistencyMonitor",
    "CycleReport",
    "DLOBPublisherService",
    "HealthServer",
    "HealthStatusCollector",
    "LastSeenState",
    "MarketStateTable",
    "MetricsEmitter",
    "PublisherSettings",
    "SnapshotPublisher",
    "build_market_configs",
    "format_snapshot",
]
