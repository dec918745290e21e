"""L2 order book snapshot models.

Raw snapshots come from the upstream aggregator with integer prices and sizes
in on-chain precision. Those integers routinely exceed the 53-bit float
mantissa, so they stay Python ints until they are rendered as base-10 strings.

FormattedSnapshot is immutable. Enrichment happens in stages, each returning a
new snapshot:

    formatted = format_snapshot(raw, grouping, depth)
    enriched = (
        formatted.with_market(descriptor, ts)
        .with_slot(raw.slot)
        .with_oracle(oracle_data)
        .with_market_slot(market_slot)
    )
"""

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence

from dlob_publisher.domain.market import MarketDescriptor


@dataclass(frozen=True)
class L2Level:
    """A single aggregated price level.

    Attributes:
        price: Price in on-chain precision.
        size: Total size at this price in on-chain precision.
        sources: Size contributed by each liquidity source (e.g. "dlob", "vamm").
    """

    price: int
    size: int
    sources: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RawLadderSnapshot:
    """L2 snapshot as produced by the upstream aggregator.

    Bids are ordered highest price first, asks lowest price first.
    """

    bids: Sequence[L2Level]
    asks: Sequence[L2Level]
    slot: int

    @classmethod
    def from_pairs(
        cls,
        bids: Sequence[tuple[int, int]],
        asks: Sequence[tuple[int, int]],
        slot: int,
    ) -> "RawLadderSnapshot":
        """Build a snapshot from (price, size) pairs with no source breakdown."""
        return cls(
            bids=[L2Level(price=p, size=s) for p, s in bids],
            asks=[L2Level(price=p, size=s) for p, s in asks],
            slot=slot,
        )


@dataclass(frozen=True)
class OracleData:
    """Oracle reading for a market at the time of the snapshot."""

    price: int
    slot: int
    confidence: int = 0
    has_sufficient_number_of_data_points: bool = True
    twap: Optional[int] = None
    twap_confidence: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "price": str(self.price),
            "slot": str(self.slot),
            "confidence": str(self.confidence),
            "hasSufficientNumberOfDataPoints": self.has_sufficient_number_of_data_points,
        }
        if self.twap is not None:
            payload["twap"] = str(self.twap)
        if self.twap_confidence is not None:
            payload["twapConfidence"] = str(self.twap_confidence)
        return payload


@dataclass(frozen=True)
class FormattedLevel:
    """A price level rendered as decimal strings."""

    price: str
    size: str
    sources: tuple[tuple[str, str], ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "price": self.price,
            "size": self.size,
            "sources": dict(self.sources),
        }


@dataclass(frozen=True)
class FormattedSnapshot:
    """Canonical snapshot with all ladder numbers as strings.

    Only bids and asks are set by the formatter; every other field is attached
    by an enrichment stage and stays None until then.
    """

    bids: tuple[FormattedLevel, ...]
    asks: tuple[FormattedLevel, ...]
    market_name: Optional[str] = None
    market_type: Optional[str] = None
    market_index: Optional[int] = None
    ts: Optional[int] = None
    slot: Optional[int] = None
    oracle_data: Optional[OracleData] = None
    market_slot: Optional[int] = None

    def with_market(self, descriptor: MarketDescriptor, ts: int) -> "FormattedSnapshot":
        """Attach market identity and the wall-clock timestamp (ms)."""
        return replace(
            self,
            market_name=descriptor.market_name.upper(),
            market_type=descriptor.market_type.value,
            market_index=descriptor.market_index,
            ts=ts,
        )

    def with_slot(self, slot: int) -> "FormattedSnapshot":
        """Attach the book slot captured from the raw snapshot."""
        return replace(self, slot=slot)

    def with_oracle(self, oracle_data: OracleData) -> "FormattedSnapshot":
        return replace(self, oracle_data=oracle_data)

    def with_market_slot(self, market_slot: int) -> "FormattedSnapshot":
        return replace(self, market_slot=market_slot)

    def truncated(self, depth: int) -> "FormattedSnapshot":
        """Keep the first `depth` levels of each side (all when depth < 0)."""
        if depth < 0:
            return self
        return replace(self, bids=self.bids[:depth], asks=self.asks[:depth])

    def ladder_payload(self) -> dict[str, Any]:
        """Bids and asks only; the basis for change detection."""
        return {
            "bids": [level.to_payload() for level in self.bids],
            "asks": [level.to_payload() for level in self.asks],
        }

    def to_payload(self) -> dict[str, Any]:
        """Serializable form sent to channels and keys.

        Enrichment fields that were never attached are omitted.
        """
        payload = self.ladder_payload()
        if self.market_name is not None:
            payload["marketName"] = self.market_name
        if self.market_type is not None:
            payload["marketType"] = self.market_type
        if self.market_index is not None:
            payload["marketIndex"] = self.market_index
        if self.ts is not None:
            payload["ts"] = self.ts
        if self.slot is not None:
            payload["slot"] = self.slot
        if self.oracle_data is not None:
            payload["oracle"] = str(self.oracle_data.price)
            payload["oracleData"] = self.oracle_data.to_payload()
        if self.market_slot is not None:
            payload["marketSlot"] = self.market_slot
        return payload
