"""
Error hierarchy and retry logic for the publisher.

This module provides:
- Error types split into transient, permanent and fatal categories
- A tenacity-based retry decorator for network operations

Retries are only applied to connection setup. Snapshot publish/set failures
are logged by the publisher and never retried, and fatal conditions (the kill
switches) are never retried either.

Usage:
    from dlob_publisher.core.retry import retry_network, NetworkError

    @retry_network(max_attempts=5)
    async def connect():
        ...
"""

from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

log = structlog.get_logger()


# =============================================================================
# Error Type Hierarchy
# =============================================================================


class ErrorCategory(str, Enum):
    """Classification of error types."""

    TRANSIENT = "transient"  # Network issues - may succeed on retry
    PERMANENT = "permanent"  # Bad input or config - will not succeed on retry
    FATAL = "fatal"  # Kill switch - process must exit
    UNKNOWN = "unknown"


class PublisherError(Exception):
    """Base exception for all publisher errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class TransientError(PublisherError):
    """Error that may succeed on retry."""

    category = ErrorCategory.TRANSIENT


class NetworkError(TransientError):
    """Network-related transient error."""

    pass


class TimeoutError(TransientError):
    """Operation timed out."""

    pass


class PermanentError(PublisherError):
    """Error that will NOT succeed on retry."""

    category = ErrorCategory.PERMANENT


class FormattingError(PermanentError):
    """A raw ladder could not be rendered (non-integer numbers, bad grouping)."""

    pass


class ConfigurationError(PermanentError):
    """Invalid or missing configuration."""

    pass


class UpstreamError(PublisherError):
    """The upstream order book or oracle source failed for a market."""

    pass


class SinkError(PublisherError):
    """A pub/sub publish or key-value set failed."""

    def __init__(
        self,
        message: str,
        destination: str = "",
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause)
        self.destination = destination


class FatalCondition(PublisherError):
    """A kill-switch condition: the process must terminate.

    Raised by the consistency monitor and handled in exactly one place, the
    application run loop, which turns it into a non-zero exit code.
    """

    category = ErrorCategory.FATAL
    condition = "fatal"

    def __init__(
        self,
        message: str,
        market_name: str,
        market_type: str,
        market_index: int,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.market_name = market_name
        self.market_type = market_type
        self.market_index = market_index
        self.details = details or {}

    def to_log_context(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "market": self.market_name,
            "market_type": self.market_type,
            "market_index": self.market_index,
            **self.details,
        }


class SlotDivergenceError(FatalCondition):
    """Book slot and oracle slot are further apart than the threshold."""

    condition = "slot_divergence"

    def __init__(
        self,
        market_name: str,
        market_type: str,
        market_index: int,
        book_slot: int,
        oracle_slot: int,
        threshold: int,
    ):
        self.book_slot = book_slot
        self.oracle_slot = oracle_slot
        self.threshold = threshold
        super().__init__(
            f"Slot divergence for market {market_name}: "
            f"book slot {book_slot}, oracle slot {oracle_slot}",
            market_name,
            market_type,
            market_index,
            details={
                "book_slot": book_slot,
                "oracle_slot": oracle_slot,
                "slot_diff": abs(book_slot - oracle_slot),
                "threshold": threshold,
            },
        )


class MarketSlotStaleError(FatalCondition):
    """Market slot has not changed for longer than the staleness window."""

    condition = "market_slot_stale"

    def __init__(
        self,
        market_name: str,
        market_type: str,
        market_index: int,
        book_slot: int,
        market_slot: int,
        elapsed_ms: int,
        threshold_ms: int,
    ):
        self.book_slot = book_slot
        self.market_slot = market_slot
        self.elapsed_ms = elapsed_ms
        self.threshold_ms = threshold_ms
        super().__init__(
            f"Same market slot {market_slot} for market {market_name} "
            f"after {elapsed_ms}ms (> {threshold_ms}ms)",
            market_name,
            market_type,
            market_index,
            details={
                "book_slot": book_slot,
                "market_slot": market_slot,
                "elapsed_ms": elapsed_ms,
                "threshold_ms": threshold_ms,
            },
        )


def wrap_redis_error(error: Exception, destination: str = "") -> PublisherError:
    """Map a redis-py exception onto the publisher hierarchy.

    Connection and timeout errors become transient, everything else a
    SinkError carrying the destination it was writing to.
    """
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import TimeoutError as RedisTimeoutError

    if isinstance(error, PublisherError):
        return error
    if isinstance(error, RedisTimeoutError):
        return TimeoutError(f"Redis timeout: {error}", cause=error)
    if isinstance(error, (RedisConnectionError, ConnectionError, OSError)):
        return NetworkError(f"Redis connection failed: {error}", cause=error)
    return SinkError(f"Redis command failed: {error}", destination=destination, cause=error)


# =============================================================================
# Retry Decorators
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_WAIT_SECONDS = 1.0
DEFAULT_MAX_WAIT_SECONDS = 30.0

F = TypeVar("F", bound=Callable[..., Any])


def _create_retry_callback(
    log_context: Optional[dict[str, Any]] = None,
) -> Callable[[RetryCallState], None]:
    context = log_context or {}

    def callback(state: RetryCallState) -> None:
        exception = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry_attempt",
            attempt=state.attempt_number,
            error=str(exception) if exception else None,
            error_type=type(exception).__name__ if exception else None,
            wait_seconds=state.next_action.sleep if state.next_action else 0,
            **context,
        )

    return callback


def retry_network(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_wait: float = DEFAULT_MIN_WAIT_SECONDS,
    max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
) -> Callable[[F], F]:
    """Decorator for async network operations.

    Retries on NetworkError and TimeoutError with jittered exponential backoff.
    The last error is re-raised once attempts are exhausted.

    Args:
        max_attempts: Maximum number of attempts.
        min_wait: Minimum wait time between retries.
        max_wait: Maximum wait time between retries.
    """

    def decorator(func: F) -> F:
        callback = _create_retry_callback({"operation": "network"})
        wait_strategy = wait_random_exponential(min=min_wait, max=max_wait)
        retry_on = retry_if_exception_type((NetworkError, TimeoutError))

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_strategy,
                retry=retry_on,
                before_sleep=callback,
                reraise=True,
            ):
                with attempt:
                    return await func(*args, **kwargs)

        return async_wrapper  # type: ignore

    return decorator
