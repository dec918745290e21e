"""Unit tests for snapshot models and enrichment stages."""

from dataclasses import FrozenInstanceError

import pytest

from dlob_publisher.domain.market import MarketDescriptor, MarketType
from dlob_publisher.domain.orderbook import (
    FormattedLevel,
    FormattedSnapshot,
    OracleData,
    RawLadderSnapshot,
)


@pytest.fixture
def descriptor():
    return MarketDescriptor(market_index=3, market_type=MarketType.PERP, market_name="sol-perp")


@pytest.fixture
def formatted():
    return FormattedSnapshot(
        bids=tuple(FormattedLevel(price=str(100 - i), size="1") for i in range(8)),
        asks=tuple(FormattedLevel(price=str(101 + i), size="2") for i in range(8)),
    )


class TestOracleData:
    """Tests for oracle payload rendering."""

    def test_numerics_render_as_strings(self):
        """Oracle numerics are strings; the data-points flag stays a bool."""
        oracle = OracleData(price=123_456_789, slot=1_100, confidence=42, twap=123_000_000)

        assert oracle.to_payload() == {
            "price": "123456789",
            "slot": "1100",
            "confidence": "42",
            "hasSufficientNumberOfDataPoints": True,
            "twap": "123000000",
        }

    def test_missing_twap_omitted(self):
        """twap fields appear only when known."""
        payload = OracleData(price=1, slot=2).to_payload()

        assert "twap" not in payload
        assert "twapConfidence" not in payload


class TestEnrichment:
    """Tests for the immutable enrichment stages."""

    def test_stages_return_new_snapshots(self, formatted, descriptor):
        """Each stage leaves its input untouched."""
        with_market = formatted.with_market(descriptor, ts=1_700_000_000_000)
        with_slot = with_market.with_slot(1_000)

        assert formatted.market_name is None
        assert with_market.slot is None
        assert with_slot.slot == 1_000
        assert with_slot.bids is formatted.bids

    def test_snapshot_is_frozen(self, formatted):
        """Fields cannot be assigned after construction."""
        with pytest.raises(FrozenInstanceError):
            formatted.slot = 5  # type: ignore[misc]

    def test_full_payload(self, formatted, descriptor):
        """A fully enriched snapshot carries every field with its wire type."""
        snapshot = (
            formatted.with_market(descriptor, ts=1_700_000_000_000)
            .with_slot(1_000)
            .with_oracle(OracleData(price=99_500, slot=1_100))
            .with_market_slot(7)
        )

        payload = snapshot.to_payload()

        assert payload["marketName"] == "SOL-PERP"
        assert payload["marketType"] == "perp"
        assert payload["marketIndex"] == 3
        assert payload["ts"] == 1_700_000_000_000
        assert payload["slot"] == 1_000
        assert payload["oracle"] == "99500"
        assert payload["oracleData"]["slot"] == "1100"
        assert payload["marketSlot"] == 7
        assert len(payload["bids"]) == 8

    def test_unenriched_payload_is_ladder_only(self, formatted):
        """Fields never attached are left out of the payload."""
        assert set(formatted.to_payload()) == {"bids", "asks"}

    def test_truncated_keeps_enrichment(self, formatted, descriptor):
        """Depth projections keep every non-ladder field."""
        snapshot = formatted.with_market(descriptor, ts=1).with_slot(10)

        top = snapshot.truncated(5)

        assert len(top.bids) == 5
        assert len(top.asks) == 5
        assert top.slot == 10
        assert top.market_name == "SOL-PERP"

    def test_negative_depth_keeps_all(self, formatted):
        """truncated(-1) returns the same snapshot."""
        assert formatted.truncated(-1) is formatted


class TestRawLadderSnapshot:
    """Tests for raw snapshot construction."""

    def test_from_pairs(self):
        """Pairs become levels with no source breakdown."""
        raw = RawLadderSnapshot.from_pairs(bids=[(10, 1)], asks=[(11, 2), (12, 3)], slot=9)

        assert raw.bids[0].price == 10
        assert raw.asks[1].size == 3
        assert dict(raw.asks[1].sources) == {}
        assert raw.slot == 9


class TestMarketDescriptor:
    """Tests for channel and key naming."""

    def test_names(self, descriptor):
        """Channel and keys follow the orderbook_{type}_{index} scheme."""
        assert descriptor.channel == "orderbook_perp_3"
        assert descriptor.latest_key == "last_update_orderbook_perp_3"
        assert descriptor.depth_key(20) == "last_update_orderbook_perp_3_depth_20"

    def test_spot_names(self):
        """Spot markets use the spot prefix."""
        spot = MarketDescriptor(market_index=1, market_type=MarketType.SPOT, market_name="SOL")

        assert spot.channel == "orderbook_spot_1"
        assert spot.key == (MarketType.SPOT, 1)
