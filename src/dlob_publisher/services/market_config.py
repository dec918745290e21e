"""Publisher settings and per-market publish configuration.

Markets are listed in TOML:

    [[markets.perp]]
    index = 0
    name = "SOL-PERP"

    [[markets.spot]]
    index = 1
    name = "SOL"
    publish_mode = "on_change"
    grouping = 100

Perp markets include synthetic (vAMM) liquidity unless the source reports the
AMM paused, capped at 100 synthetic levels. Spot markets include no synthetic
liquidity and merge whichever external books the source has for them.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from dlob_publisher.core.config import ConfigManager
from dlob_publisher.core.retry import ConfigurationError
from dlob_publisher.domain.market import (
    MarketDescriptor,
    MarketPublishConfig,
    MarketType,
    PublishMode,
)
from dlob_publisher.services.consistency import (
    DEFAULT_PERP_STALENESS_MS,
    DEFAULT_SLOT_DIFF_THRESHOLD,
    DEFAULT_SPOT_STALENESS_MS,
)

if TYPE_CHECKING:
    from dlob_publisher.integrations.source import OrderBookSource

DEFAULT_REFRESH_INTERVAL_MS = 1000
DEFAULT_PERP_SECONDARY_ORDER_CAP = 100


@dataclass(frozen=True)
class PublisherSettings:
    """Process-wide publisher settings.

    Attributes:
        slot_diff_threshold: Max |book slot - oracle slot| before the kill switch.
        perp_staleness_ms: Max time a perp market slot may stay unchanged.
        spot_staleness_ms: Max time a spot market slot may stay unchanged.
        refresh_interval_ms: Target time between refresh cycles.
    """

    slot_diff_threshold: int = DEFAULT_SLOT_DIFF_THRESHOLD
    perp_staleness_ms: int = DEFAULT_PERP_STALENESS_MS
    spot_staleness_ms: int = DEFAULT_SPOT_STALENESS_MS
    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS

    @classmethod
    def from_config(cls, config: ConfigManager) -> "PublisherSettings":
        settings = cls(
            slot_diff_threshold=config.get_int(
                "kill_switch.slot_diff_threshold", default=DEFAULT_SLOT_DIFF_THRESHOLD
            ),
            perp_staleness_ms=config.get_int(
                "staleness.perp_ms", default=DEFAULT_PERP_STALENESS_MS
            ),
            spot_staleness_ms=config.get_int(
                "staleness.spot_ms", default=DEFAULT_SPOT_STALENESS_MS
            ),
            refresh_interval_ms=config.get_int(
                "service.refresh_interval_ms", default=DEFAULT_REFRESH_INTERVAL_MS
            ),
        )
        if settings.slot_diff_threshold < 0:
            raise ConfigurationError("kill_switch.slot_diff_threshold must be >= 0")
        if settings.perp_staleness_ms <= 0 or settings.spot_staleness_ms <= 0:
            raise ConfigurationError("staleness windows must be positive")
        if settings.refresh_interval_ms <= 0:
            raise ConfigurationError("service.refresh_interval_ms must be positive")
        return settings


def _descriptor(entry: Mapping[str, Any], market_type: MarketType) -> MarketDescriptor:
    try:
        index = int(entry["index"])
        name = str(entry["name"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{market_type.value} market entries need 'index' and 'name': {dict(entry)!r}",
            cause=e,
        ) from e
    return MarketDescriptor(market_index=index, market_type=market_type, market_name=name)


def _optional_int(entry: Mapping[str, Any], key: str) -> Optional[int]:
    value = entry.get(key)
    return None if value is None else int(value)


def _common_options(entry: Mapping[str, Any]) -> dict[str, Any]:
    try:
        return {
            "depth": int(entry.get("depth", -1)),
            "grouping": _optional_int(entry, "grouping"),
            "publish_mode": PublishMode.parse(entry.get("publish_mode", PublishMode.ALWAYS)),
        }
    except ValueError as e:
        raise ConfigurationError(f"invalid market options {dict(entry)!r}: {e}", cause=e) from e


def build_perp_config(entry: Mapping[str, Any], source: "OrderBookSource") -> MarketPublishConfig:
    descriptor = _descriptor(entry, MarketType.PERP)
    cap = _optional_int(entry, "secondary_order_cap")
    try:
        return MarketPublishConfig(
            descriptor=descriptor,
            include_secondary_liquidity=not source.is_amm_paused(descriptor.market_index),
            secondary_order_cap=DEFAULT_PERP_SECONDARY_ORDER_CAP if cap is None else cap,
            fallback_liquidity_sources=(),
            **_common_options(entry),
        )
    except ValueError as e:
        raise ConfigurationError(str(e), cause=e) from e


def build_spot_config(entry: Mapping[str, Any], source: "OrderBookSource") -> MarketPublishConfig:
    descriptor = _descriptor(entry, MarketType.SPOT)
    fallbacks = tuple(
        s for s in source.fallback_sources(descriptor.market_index) if s is not None
    )
    try:
        return MarketPublishConfig(
            descriptor=descriptor,
            include_secondary_liquidity=False,
            secondary_order_cap=None,
            fallback_liquidity_sources=fallbacks,
            **_common_options(entry),
        )
    except ValueError as e:
        raise ConfigurationError(str(e), cause=e) from e


def build_market_configs(
    config: ConfigManager,
    source: "OrderBookSource",
) -> list[MarketPublishConfig]:
    """Build one MarketPublishConfig per configured market, perps first.

    Raises:
        ConfigurationError: On malformed entries or a duplicate (type, index).
    """
    markets = [build_perp_config(e, source) for e in config.get_list("markets.perp")]
    markets += [build_spot_config(e, source) for e in config.get_list("markets.spot")]

    seen: set[tuple[MarketType, int]] = set()
    for market in markets:
        key = market.descriptor.key
        if key in seen:
            raise ConfigurationError(
                f"duplicate {key[0].value} market index {key[1]} in configuration"
            )
        seen.add(key)
    return markets
