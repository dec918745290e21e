"""Upstream order book source interface.

The publisher does not build order books or read oracles itself. Whatever
aggregates the DLOB (and any fallback books) and reads the oracle accounts is
plugged in as an OrderBookSource, resolved from configuration:

    [source]
    factory = "my_package.dlob:create_source"

The factory is called with the ConfigManager and returns the source.
"""

import importlib
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence, runtime_checkable

from dlob_publisher.core.retry import ConfigurationError
from dlob_publisher.domain.market import MarketPublishConfig, MarketType
from dlob_publisher.domain.orderbook import OracleData, RawLadderSnapshot

if TYPE_CHECKING:
    from dlob_publisher.core.config import ConfigManager


@runtime_checkable
class OrderBookSource(Protocol):
    """What the publisher consumes from the upstream aggregator."""

    async def refresh(self) -> None:
        """Bring the aggregated books up to date. Called once per cycle."""
        ...

    def get_l2(self, config: MarketPublishConfig) -> RawLadderSnapshot:
        """Current L2 for a market, honouring depth/secondary/fallback settings."""
        ...

    def get_oracle_data(self, market_type: MarketType, market_index: int) -> OracleData:
        ...

    def get_market_slot(self, market_type: MarketType, market_index: int) -> int:
        """Slot at which the market account was last updated."""
        ...

    def is_amm_paused(self, market_index: int) -> bool:
        """Whether a perp market's AMM is paused (no synthetic liquidity)."""
        ...

    def fallback_sources(self, market_index: int) -> Sequence[Any]:
        """External books available for a spot market, in merge order.

        Entries may be None when a venue has no book for the market.
        """
        ...


SourceFactory = Callable[["ConfigManager"], OrderBookSource]


def load_source_factory(path: str) -> SourceFactory:
    """Resolve a "module:attribute" path to a source factory.

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"source factory must look like 'module:callable', got {path!r}"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"cannot import source module {module_name!r}", cause=e) from e

    factory = module
    for part in attr.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as e:
            raise ConfigurationError(
                f"{module_name!r} has no attribute {attr!r}", cause=e
            ) from e

    if not callable(factory):
        raise ConfigurationError(f"source factory {path!r} is not callable")
    return factory  # type: ignore[return-value]
