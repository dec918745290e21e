"""Snapshot formatting - price grouping, depth truncation, string rendering.

Prices are grouped into buckets that favour the maker: bids round down to a
multiple of the grouping, asks round up. Grouping runs over the whole ladder
before truncation, so every bucket's size is the exact sum of the levels that
fell into it.
"""

from typing import Optional, Sequence

from dlob_publisher.core.retry import FormattingError
from dlob_publisher.domain.orderbook import (
    FormattedLevel,
    FormattedSnapshot,
    L2Level,
    RawLadderSnapshot,
)


def _require_int(value: object, what: str) -> int:
    # bool is an int subclass but never a valid price or size
    if isinstance(value, bool) or not isinstance(value, int):
        raise FormattingError(
            f"{what} must be an integer in on-chain precision, got {type(value).__name__}: {value!r}"
        )
    return value


def standardize_price(price: int, grouping: int, is_bid: bool) -> int:
    """Snap price to a multiple of grouping.

    Bids round down, asks round up. Zero and exact multiples are unchanged.
    """
    if price == 0:
        return price
    remainder = price % grouping
    if remainder == 0:
        return price
    if is_bid:
        return price - remainder
    return price + grouping - remainder


def group_levels(
    levels: Sequence[L2Level],
    grouping: int,
    is_bid: bool,
) -> list[L2Level]:
    """Merge adjacent levels that standardize to the same bucket price.

    Input order is preserved; since standardization is monotonic, levels that
    share a bucket are always adjacent in a sorted ladder.
    """
    grouped: list[L2Level] = []
    for level in levels:
        price = standardize_price(
            _require_int(level.price, "price"), grouping, is_bid
        )
        size = _require_int(level.size, "size")

        if grouped and grouped[-1].price == price:
            current = grouped[-1]
            sources = dict(current.sources)
            for source, source_size in level.sources.items():
                sources[source] = sources.get(source, 0) + source_size
            grouped[-1] = L2Level(price=price, size=current.size + size, sources=sources)
        else:
            grouped.append(L2Level(price=price, size=size, sources=dict(level.sources)))
    return grouped


def _render_level(level: L2Level) -> FormattedLevel:
    price = _require_int(level.price, "price")
    size = _require_int(level.size, "size")
    sources = tuple(
        (name, str(_require_int(source_size, f"source size for {name}")))
        for name, source_size in level.sources.items()
    )
    return FormattedLevel(price=str(price), size=str(size), sources=sources)


def format_snapshot(
    raw: RawLadderSnapshot,
    grouping: Optional[int] = None,
    depth: int = -1,
) -> FormattedSnapshot:
    """Render a raw ladder into its canonical string form.

    The book slot is not carried over; callers attach it with
    FormattedSnapshot.with_slot so it cannot be confused with the market slot.

    Args:
        raw: Snapshot from the upstream aggregator.
        grouping: Optional positive price bucket size.
        depth: Levels per side to keep, -1 for all.

    Raises:
        FormattingError: On non-integer prices/sizes or a non-positive grouping.
    """
    bids: Sequence[L2Level] = raw.bids
    asks: Sequence[L2Level] = raw.asks

    if grouping is not None:
        if isinstance(grouping, bool) or not isinstance(grouping, int) or grouping <= 0:
            raise FormattingError(f"grouping must be a positive integer, got {grouping!r}")
        bids = group_levels(bids, grouping, is_bid=True)
        asks = group_levels(asks, grouping, is_bid=False)

    if depth >= 0:
        bids = bids[:depth]
        asks = asks[:depth]

    return FormattedSnapshot(
        bids=tuple(_render_level(level) for level in bids),
        asks=tuple(_render_level(level) for level in asks),
    )
