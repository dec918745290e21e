"""DLOB publisher - L2 order book snapshots to Redis pub/sub and latest-value keys."""

__version__ = "0.1.0"
