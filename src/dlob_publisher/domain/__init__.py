"""Domain models - pure data structures with no I/O dependencies."""

from dlob_publisher.domain.market import (
    MarketDescriptor,
    MarketKey,
    MarketPublishConfig,
    MarketType,
    PublishMode,
)
from dlob_publisher.domain.orderbook import (
    FormattedLevel,
    FormattedSnapshot,
    L2Level,
    OracleData,
    RawLadderSnapshot,
)

__all__ = [
    # Market models
    "MarketDescriptor",
    "MarketKey",
    "MarketPublishConfig",
    "MarketType",
    "PublishMode",
    # Snapshot models
    "FormattedLevel",
    "FormattedSnapshot",
    "L2Level",
    "OracleData",
    "RawLadderSnapshot",
]
