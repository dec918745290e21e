"""
Shared pytest fixtures for dlob_publisher tests.
"""
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from dlob_publisher.core.sink import RedisSink
from dlob_publisher.domain.market import (
    MarketDescriptor,
    MarketPublishConfig,
    MarketType,
    PublishMode,
)
from dlob_publisher.domain.orderbook import L2Level, OracleData, RawLadderSnapshot


class FakeOrderBookSource:
    """In-memory OrderBookSource.

    Books, oracle readings and market slots are set per (type, index); a market
    listed in `failing` raises from get_l2.
    """

    def __init__(self) -> None:
        self.books: dict[tuple[MarketType, int], RawLadderSnapshot] = {}
        self.oracles: dict[tuple[MarketType, int], OracleData] = {}
        self.market_slots: dict[tuple[MarketType, int], int] = {}
        self.paused_amms: set[int] = set()
        self.fallbacks: dict[int, list[Any]] = {}
        self.failing: set[tuple[MarketType, int]] = set()
        self.refresh_calls = 0
        self.l2_requests: list[MarketPublishConfig] = []

    def set_market(
        self,
        market_type: MarketType,
        market_index: int,
        book: RawLadderSnapshot,
        oracle_slot: int,
        market_slot: int,
        oracle_price: int = 1_000_000,
    ) -> None:
        key = (market_type, market_index)
        self.books[key] = book
        self.oracles[key] = OracleData(price=oracle_price, slot=oracle_slot, confidence=100)
        self.market_slots[key] = market_slot

    async def refresh(self) -> None:
        self.refresh_calls += 1

    def get_l2(self, config: MarketPublishConfig) -> RawLadderSnapshot:
        self.l2_requests.append(config)
        key = config.descriptor.key
        if key in self.failing:
            raise RuntimeError(f"no book for {config.market_name}")
        return self.books[key]

    def get_oracle_data(self, market_type: MarketType, market_index: int) -> OracleData:
        return self.oracles[(market_type, market_index)]

    def get_market_slot(self, market_type: MarketType, market_index: int) -> int:
        return self.market_slots[(market_type, market_index)]

    def is_amm_paused(self, market_index: int) -> bool:
        return market_index in self.paused_amms

    def fallback_sources(self, market_index: int) -> list[Any]:
        return self.fallbacks.get(market_index, [])


def make_book(
    slot: int,
    levels: int = 3,
    bid_start: int = 100_000,
    ask_start: int = 100_100,
    tick: int = 10,
) -> RawLadderSnapshot:
    """Build a sorted ladder with `levels` levels per side, all from the dlob."""
    bids = [
        L2Level(price=bid_start - i * tick, size=1_000 + i, sources={"dlob": 1_000 + i})
        for i in range(levels)
    ]
    asks = [
        L2Level(price=ask_start + i * tick, size=2_000 + i, sources={"dlob": 2_000 + i})
        for i in range(levels)
    ]
    return RawLadderSnapshot(bids=bids, asks=asks, slot=slot)


def make_market(
    market_type: MarketType,
    market_index: int,
    name: Optional[str] = None,
    publish_mode: PublishMode = PublishMode.ALWAYS,
    depth: int = -1,
    grouping: Optional[int] = None,
) -> MarketPublishConfig:
    descriptor = MarketDescriptor(
        market_index=market_index,
        market_type=market_type,
        market_name=name or f"{market_type.value}-{market_index}",
    )
    return MarketPublishConfig(
        descriptor=descriptor,
        depth=depth,
        grouping=grouping,
        publish_mode=publish_mode,
    )


class FakeClock:
    """Controllable wall clock in milliseconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def fake_source():
    """In-memory upstream source."""
    return FakeOrderBookSource()


@pytest.fixture
def clock():
    """Controllable wall clock."""
    return FakeClock()


@pytest.fixture
def mock_redis():
    """Mock asyncio Redis client."""
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.publish = AsyncMock(return_value=1)
    client.set = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest_asyncio.fixture
async def redis_sink(mock_redis):
    """Started RedisSink writing to the mock client."""
    sink = RedisSink(client=mock_redis, connect_min_wait=0, connect_max_wait=0)
    await sink.start()
    yield sink
    await sink.stop()
