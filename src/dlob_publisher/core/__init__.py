"""Core infrastructure - config, logging, lifecycle, errors, shutdown, Redis sink."""

from dlob_publisher.core.config import ConfigManager
from dlob_publisher.core.lifecycle import BaseComponent, HealthCheckResult, HealthStatus
from dlob_publisher.core.logging import get_logger, setup_logging
from dlob_publisher.core.retry import (
    ConfigurationError,
    ErrorCategory,
    FatalCondition,
    FormattingError,
    MarketSlotStaleError,
    NetworkError,
    PermanentError,
    PublisherError,
    SinkError,
    SlotDivergenceError,
    TimeoutError,
    TransientError,
    UpstreamError,
    retry_network,
    wrap_redis_error,
)
from dlob_publisher.core.shutdown import ShutdownManager, ShutdownPhase
from dlob_publisher.core.sink import RedisSink, encode_payload

__all__ = [
    # Config
    "ConfigManager",
    # Logging
    "get_logger",
    "setup_logging",
    # Lifecycle
    "BaseComponent",
    "HealthCheckResult",
    "HealthStatus",
    # Errors
    "ErrorCategory",
    "PublisherError",
    "TransientError",
    "NetworkError",
    "TimeoutError",
    "PermanentError",
    "FormattingError",
    "ConfigurationError",
    "UpstreamError",
    "SinkError",
    # Kill switch
    "FatalCondition",
    "SlotDivergenceError",
    "MarketSlotStaleError",
    # Retry helpers
    "retry_network",
    "wrap_redis_error",
    # Shutdown
    "ShutdownManager",
    "ShutdownPhase",
    # Sink
    "RedisSink",
    "encode_payload",
]
