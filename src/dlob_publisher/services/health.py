"""
HTTP health and metrics endpoint.

Serves /health (JSON) for container health checks and /metrics (Prometheus
text) for scraping.

Health response:
{
    "status": "healthy" | "degraded" | "unhealthy",
    "redis_connected": bool,
    "markets": int,
    "last_cycle_age_seconds": float | null,
    "uptime_seconds": float
}
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog
from aiohttp import web

from dlob_publisher import __version__
from dlob_publisher.core.lifecycle import BaseComponent, HealthCheckResult

if TYPE_CHECKING:
    from dlob_publisher.core.sink import RedisSink

log = structlog.get_logger()

DEFAULT_HEALTH_PORT = 9464


class HealthServer(BaseComponent):
    """HTTP server providing /health and /metrics.

    Usage:
        server = HealthServer(
            port=9464,
            health_provider=collector.get_health_status,
            metrics_provider=metrics.get_metrics,
        )
        await server.start()
        await server.stop()
    """

    def __init__(
        self,
        port: int = DEFAULT_HEALTH_PORT,
        host: str = "0.0.0.0",
        health_provider: Optional[Callable[[], Awaitable[dict[str, Any]]]] = None,
        metrics_provider: Optional[Callable[[], str]] = None,
    ) -> None:
        """Initialize the health server.

        Args:
            port: Port to listen on.
            host: Host to bind to.
            health_provider: Async callable that returns health status dict.
            metrics_provider: Callable that returns Prometheus metrics text.
        """
        super().__init__()
        self._port = port
        self._host = host
        self._health_provider = health_provider
        self._metrics_provider = metrics_provider
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._log = log.bind(component="health_server")

    @property
    def port(self) -> int:
        return self._port

    def build_app(self) -> web.Application:
        """Build the aiohttp application (also used directly by tests)."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/", self._handle_root)
        return app

    async def _do_start(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        self._log.info(
            "health_server_started",
            host=self._host,
            port=self._port,
            endpoints=["/health", "/metrics"],
        )

    async def _do_stop(self) -> None:
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._app = None
        self._runner = None
        self._site = None
        self._log.info("health_server_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        if self._site is None:
            return HealthCheckResult.unhealthy("Server not running")
        return HealthCheckResult.healthy(
            uptime_seconds=self.uptime_seconds,
            port=self._port,
        )

    async def _handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({
            "service": "dlob_publisher",
            "version": __version__,
            "endpoints": ["/health", "/metrics"],
        })

    async def _handle_health(self, request: web.Request) -> web.Response:
        try:
            if self._health_provider is None:
                return web.json_response(
                    {"status": "unknown", "error": "No health provider configured"},
                    status=503,
                )

            health_data = await self._health_provider()
            # degraded is still "up"
            status_code = 503 if health_data.get("status") == "unhealthy" else 200
            return web.json_response(health_data, status=status_code)

        except Exception as e:
            self._log.error("health_check_error", error=str(e))
            return web.json_response(
                {"status": "unhealthy", "error": str(e)},
                status=503,
            )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        try:
            if self._metrics_provider is None:
                return web.Response(
                    text="# No metrics provider configured\n",
                    content_type="text/plain",
                )
            return web.Response(
                text=self._metrics_provider(),
                content_type="text/plain",
            )

        except Exception as e:
            self._log.error("metrics_error", error=str(e))
            return web.Response(
                text=f"# Error: {e}\n",
                content_type="text/plain",
                status=500,
            )


class HealthStatusCollector:
    """Aggregates health information for the /health endpoint.

    Redis down is unhealthy. A refresh loop that has not completed a cycle
    within `stale_cycle_seconds` is degraded.
    """

    def __init__(
        self,
        sink: "RedisSink",
        get_market_count: Optional[Callable[[], int]] = None,
        get_last_cycle_age: Optional[Callable[[], Optional[float]]] = None,
        get_uptime_seconds: Optional[Callable[[], float]] = None,
        stale_cycle_seconds: float = 30.0,
    ) -> None:
        self._sink = sink
        self._get_market_count = get_market_count
        self._get_last_cycle_age = get_last_cycle_age
        self._get_uptime_seconds = get_uptime_seconds
        self._stale_cycle_seconds = stale_cycle_seconds
        self._log = log.bind(component="health_collector")

    async def get_health_status(self) -> dict[str, Any]:
        issues: list[str] = []

        redis_connected = self._sink.is_connected if self._sink else False
        if not redis_connected:
            issues.append("redis_disconnected")

        markets = 0
        if self._get_market_count:
            try:
                markets = self._get_market_count()
            except Exception as e:
                self._log.warning("market_count_error", error=str(e))

        last_cycle_age: Optional[float] = None
        if self._get_last_cycle_age:
            try:
                last_cycle_age = self._get_last_cycle_age()
            except Exception as e:
                self._log.warning("last_cycle_age_error", error=str(e))
        if last_cycle_age is None or last_cycle_age > self._stale_cycle_seconds:
            issues.append("no_recent_cycle")

        uptime_seconds = 0.0
        if self._get_uptime_seconds:
            try:
                uptime_seconds = self._get_uptime_seconds()
            except Exception as e:
                self._log.warning("uptime_error", error=str(e))

        if not redis_connected:
            status = "unhealthy"
        elif issues:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "redis_connected": redis_connected,
            "markets": markets,
            "last_cycle_age_seconds": last_cycle_age,
            "uptime_seconds": uptime_seconds,
            "issues": issues,
        }
