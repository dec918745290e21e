"""
Redis sink for order book snapshots.

Snapshots go out two ways: PUBLISH on a pub/sub channel for live consumers
and SET on a latest-value key for consumers that poll. Both share one pooled
asyncio Redis client, so markets processed concurrently can write at once.
"""
import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from dlob_publisher.core.lifecycle import BaseComponent, HealthCheckResult
from dlob_publisher.core.retry import (
    PublisherError,
    SinkError,
    retry_network,
    wrap_redis_error,
)

log = structlog.get_logger()

DEFAULT_REDIS_URL = "redis://localhost:6379"
DEFAULT_MAX_CONNECTIONS = 32


class SnapshotEncoder(json.JSONEncoder):
    """JSON encoder for snapshot payloads.

    Integers are left alone; arbitrary-precision ladder values are already
    strings by the time they reach the sink.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        return super().default(obj)


def encode_payload(payload: Any) -> str:
    """Encode a payload as compact JSON."""
    return json.dumps(payload, cls=SnapshotEncoder, separators=(",", ":"))


class RedisSink(BaseComponent):
    """Pub/sub and latest-value writer backed by Redis.

    Usage:
        sink = RedisSink(redis_url="redis://localhost:6379")
        await sink.start()
        await sink.publish("orderbook_perp_0", snapshot)
        await sink.set("last_update_orderbook_perp_0", snapshot)
        await sink.stop()
    """

    def __init__(
        self,
        redis_url: str = DEFAULT_REDIS_URL,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        connect_attempts: int = 3,
        connect_min_wait: float = 1.0,
        connect_max_wait: float = 10.0,
        client: Optional[redis.Redis] = None,
    ) -> None:
        """Initialize RedisSink.

        Args:
            redis_url: Redis connection URL
            max_connections: Size of the shared connection pool
            connect_attempts: Connection attempts at startup before giving up
            connect_min_wait: Minimum backoff between connection attempts
            connect_max_wait: Maximum backoff between connection attempts
            client: Pre-built client (tests); skips from_url
        """
        super().__init__()
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._connect_attempts = connect_attempts
        self._connect_min_wait = connect_min_wait
        self._connect_max_wait = connect_max_wait
        self._redis: Optional[redis.Redis] = client
        self._log = log.bind(component="redis_sink")

    @property
    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._redis is not None and self._running

    async def _do_start(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._max_connections,
            )

        connect = retry_network(
            max_attempts=self._connect_attempts,
            min_wait=self._connect_min_wait,
            max_wait=self._connect_max_wait,
        )(self._ping)
        await connect()
        self._log.info("redis_connected", url=self._redis_url)

    async def _ping(self) -> None:
        assert self._redis is not None
        try:
            await self._redis.ping()
        except Exception as e:
            raise wrap_redis_error(e) from e

    async def _do_stop(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
        self._redis = None
        self._log.info("redis_disconnected")

    async def _do_health_check(self) -> HealthCheckResult:
        try:
            await self._ping()
        except PublisherError as e:
            return HealthCheckResult.unhealthy(str(e))
        return HealthCheckResult.healthy(uptime_seconds=self.uptime_seconds)

    def _client(self, destination: str) -> redis.Redis:
        if self._redis is None:
            raise SinkError("RedisSink not connected", destination=destination)
        return self._redis

    async def publish(self, channel: str, payload: Any) -> int:
        """Publish payload to a channel.

        Returns:
            Number of subscribers that received the message.

        Raises:
            SinkError: (or a transient subclass of PublisherError) on failure.
        """
        client = self._client(channel)
        data = encode_payload(payload)
        try:
            return await client.publish(channel, data)
        except Exception as e:
            raise wrap_redis_error(e, destination=channel) from e

    async def set(self, key: str, payload: Any) -> None:
        """Store payload as the latest value for key."""
        client = self._client(key)
        data = encode_payload(payload)
        try:
            await client.set(key, data)
        except Exception as e:
            raise wrap_redis_error(e, destination=key) from e
