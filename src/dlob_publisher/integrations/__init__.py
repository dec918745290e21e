"""Integrations with the upstream order book aggregator."""

from dlob_publisher.integrations.source import (
    OrderBookSource,
    SourceFactory,
    load_source_factory,
)

__all__ = [
    "OrderBookSource",
    "SourceFactory",
    "load_source_factory",
]
