"""Market descriptors and per-market publishing configuration.

Both are frozen: they are built once at startup from configuration and the
upstream source, then shared read-only by every refresh cycle.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MarketType(str, Enum):
    """Market class. The value is the lowercase form used in channel/key names."""

    SPOT = "spot"
    PERP = "perp"

    @classmethod
    def parse(cls, value: "str | MarketType") -> "MarketType":
        if isinstance(value, MarketType):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"unknown market type: {value!r}") from None


class PublishMode(str, Enum):
    """When a formatted snapshot is published."""

    ALWAYS = "always"
    ON_CHANGE = "on_change"

    @classmethod
    def parse(cls, value: "str | PublishMode") -> "PublishMode":
        if isinstance(value, PublishMode):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"unknown publish mode: {value!r}") from None


MarketKey = tuple[MarketType, int]


@dataclass(frozen=True)
class MarketDescriptor:
    """Identity of a configured market.

    Attributes:
        market_index: On-chain market index.
        market_type: SPOT or PERP.
        market_name: Display name, e.g. "SOL-PERP".
    """

    market_index: int
    market_type: MarketType
    market_name: str

    @property
    def key(self) -> MarketKey:
        """State-table key; (type, index) is unique per market."""
        return (self.market_type, self.market_index)

    @property
    def channel(self) -> str:
        """Pub/sub channel carrying full snapshots."""
        return f"orderbook_{self.market_type.value}_{self.market_index}"

    @property
    def latest_key(self) -> str:
        """Latest-value key holding the full snapshot."""
        return f"last_update_orderbook_{self.market_type.value}_{self.market_index}"

    def depth_key(self, depth: int) -> str:
        """Latest-value key holding a depth-truncated snapshot."""
        return f"{self.latest_key}_depth_{depth}"

    def __str__(self) -> str:
        return self.market_name


@dataclass(frozen=True)
class MarketPublishConfig:
    """How a market's L2 is requested, formatted and published.

    Attributes:
        descriptor: Market identity.
        depth: Levels per side to keep (-1 = unlimited).
        include_secondary_liquidity: Merge synthetic (vAMM) liquidity upstream.
        secondary_order_cap: Max synthetic levels requested from upstream.
        fallback_liquidity_sources: External books merged upstream, in order.
        grouping: Price bucket size; None leaves prices ungrouped.
        publish_mode: ALWAYS or ON_CHANGE.
    """

    descriptor: MarketDescriptor
    depth: int = -1
    include_secondary_liquidity: bool = False
    secondary_order_cap: Optional[int] = None
    fallback_liquidity_sources: tuple[Any, ...] = field(default_factory=tuple)
    grouping: Optional[int] = None
    publish_mode: PublishMode = PublishMode.ALWAYS

    def __post_init__(self) -> None:
        if self.grouping is not None and self.grouping <= 0:
            raise ValueError(f"grouping must be positive, got {self.grouping}")

    @property
    def market_type(self) -> MarketType:
        return self.descriptor.market_type

    @property
    def market_index(self) -> int:
        return self.descriptor.market_index

    @property
    def market_name(self) -> str:
        return self.descriptor.market_name
