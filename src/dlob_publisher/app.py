"""
Publisher application lifecycle and component wiring.

The app owns the refresh loop: every `service.refresh_interval_ms` it asks the
upstream source to refresh, then runs one publish cycle over all markets.

Two ways out of the loop:
- SIGTERM/SIGINT: graceful shutdown (finish the cycle, close health server and
  Redis, flush metrics); run_forever returns 0.
- Kill switch (FatalCondition): logged and counted, no graceful shutdown;
  run_forever returns KILL_SWITCH_EXIT_CODE and the entry point exits with it.
"""
import asyncio
import time
from typing import Callable, Optional

from dlob_publisher import __version__
from dlob_publisher.core.config import ConfigManager
from dlob_publisher.core.lifecycle import BaseComponent, HealthCheckResult, HealthStatus
from dlob_publisher.core.logging import get_logger, setup_logging
from dlob_publisher.core.retry import ConfigurationError, FatalCondition
from dlob_publisher.core.shutdown import ShutdownManager
from dlob_publisher.core.sink import DEFAULT_MAX_CONNECTIONS, DEFAULT_REDIS_URL, RedisSink
from dlob_publisher.integrations.source import OrderBookSource, load_source_factory
from dlob_publisher.services.change_detector import ChangeDetector
from dlob_publisher.services.consistency import ConsistencyMonitor, MarketStateTable
from dlob_publisher.services.dlob_service import CycleReport, DLOBPublisherService
from dlob_publisher.services.health import (
    DEFAULT_HEALTH_PORT,
    HealthServer,
    HealthStatusCollector,
)
from dlob_publisher.services.market_config import PublisherSettings, build_market_configs
from dlob_publisher.services.metrics import MetricsEmitter
from dlob_publisher.services.publisher import SnapshotPublisher

KILL_SWITCH_EXIT_CODE = 1


class DLOBPublisherApp(BaseComponent):
    """Main publisher application.

    Usage:
        app = DLOBPublisherApp(ConfigManager(Path("config/default.toml")))
        exit_code = await app.run_forever()
    """

    def __init__(
        self,
        config: ConfigManager,
        source: Optional[OrderBookSource] = None,
        sink: Optional[RedisSink] = None,
        metrics: Optional[MetricsEmitter] = None,
        now_ms: Optional[Callable[[], int]] = None,
        configure_logging: bool = True,
    ) -> None:
        """Initialize the application.

        Args:
            config: Loaded configuration.
            source: Upstream source; resolved from `source.factory` when omitted.
            sink: Redis sink; built from `redis.*` settings when omitted.
            metrics: Metrics emitter; a fresh one when omitted.
            now_ms: Wall-clock override (tests).
            configure_logging: Set up structlog from `service.*` settings.
        """
        super().__init__()
        self._config = config

        if configure_logging:
            setup_logging(
                level=config.get("service.log_level", "INFO"),
                json_output=config.get_bool("service.log_json", False),
            )
        self._log = get_logger("app")

        self._settings = PublisherSettings.from_config(config)
        self._source = source or self._load_source(config)
        self._sink = sink or RedisSink(
            redis_url=config.get("redis.url", DEFAULT_REDIS_URL),
            max_connections=config.get_int("redis.max_connections", DEFAULT_MAX_CONNECTIONS),
            connect_attempts=config.get_int("redis.connect_attempts", 5),
        )
        self._metrics = metrics or MetricsEmitter()

        self._state_table = MarketStateTable()
        self._monitor = ConsistencyMonitor(
            self._state_table,
            slot_diff_threshold=self._settings.slot_diff_threshold,
            perp_staleness_ms=self._settings.perp_staleness_ms,
            spot_staleness_ms=self._settings.spot_staleness_ms,
            now_ms=now_ms,
            metrics=self._metrics,
        )
        self._markets = build_market_configs(config, self._source)
        self._service = DLOBPublisherService(
            markets=self._markets,
            source=self._source,
            monitor=self._monitor,
            detector=ChangeDetector(self._state_table),
            publisher=SnapshotPublisher(self._sink, metrics=self._metrics),
            metrics=self._metrics,
            now_ms=now_ms,
        )

        self._health_collector = HealthStatusCollector(
            sink=self._sink,
            get_market_count=lambda: len(self._markets),
            get_last_cycle_age=self.last_cycle_age_seconds,
            get_uptime_seconds=lambda: self.uptime_seconds,
            stale_cycle_seconds=max(30.0, self._settings.refresh_interval_ms / 1000 * 10),
        )
        self._health_server: Optional[HealthServer] = None
        if config.get_bool("health.enabled", True):
            self._health_server = HealthServer(
                port=config.get_int("health.port", DEFAULT_HEALTH_PORT),
                health_provider=self._health_collector.get_health_status,
                metrics_provider=self._metrics.get_metrics,
            )

        self._shutdown_manager = ShutdownManager(
            timeout_seconds=config.get_float("service.shutdown_timeout_seconds", 10.0),
        )
        self._cycle_idle = asyncio.Event()
        self._cycle_idle.set()
        self._last_cycle_at: Optional[float] = None
        self._fatal: Optional[FatalCondition] = None

    @staticmethod
    def _load_source(config: ConfigManager) -> OrderBookSource:
        factory_path = config.get("source.factory")
        if not factory_path:
            raise ConfigurationError("source.factory is not configured")
        return load_source_factory(factory_path)(config)

    @property
    def config(self) -> ConfigManager:
        return self._config

    @property
    def settings(self) -> PublisherSettings:
        return self._settings

    @property
    def service(self) -> DLOBPublisherService:
        return self._service

    @property
    def state_table(self) -> MarketStateTable:
        return self._state_table

    @property
    def metrics(self) -> MetricsEmitter:
        return self._metrics

    @property
    def shutdown_manager(self) -> ShutdownManager:
        return self._shutdown_manager

    @property
    def fatal_condition(self) -> Optional[FatalCondition]:
        """The kill-switch condition that stopped the app, if any."""
        return self._fatal

    def last_cycle_age_seconds(self) -> Optional[float]:
        if self._last_cycle_at is None:
            return None
        return time.monotonic() - self._last_cycle_at

    async def _do_start(self) -> None:
        self._log.info(
            "starting_dlob_publisher",
            version=__version__,
            markets=[m.market_name for m in self._markets],
            slot_diff_threshold=self._settings.slot_diff_threshold,
            perp_staleness_ms=self._settings.perp_staleness_ms,
            spot_staleness_ms=self._settings.spot_staleness_ms,
        )

        await self._sink.start()
        self._metrics.set_redis_connected(True)

        if self._health_server is not None:
            await self._health_server.start()

        self._configure_shutdown_manager()
        self._shutdown_manager.install_signal_handlers()

        self._log.info("dlob_publisher_started", markets=len(self._markets))

    def _configure_shutdown_manager(self) -> None:
        self._shutdown_manager.on_stop_refresh(self._wait_for_cycle)
        if self._health_server is not None:
            self._shutdown_manager.on_close_connections(self._health_server.stop)
        self._shutdown_manager.on_close_connections(self._close_sink)
        self._shutdown_manager.on_flush_data(self._flush_metrics)

    async def _wait_for_cycle(self) -> None:
        await self._cycle_idle.wait()

    async def _close_sink(self) -> None:
        await self._sink.stop()
        self._metrics.set_redis_connected(False)

    async def _flush_metrics(self) -> None:
        self._metrics.update_uptime(self.uptime_seconds)
        self._log.info("metrics_flushed")

    async def _do_stop(self) -> None:
        self._log.info("stopping_dlob_publisher")

        if not self._shutdown_manager.is_shutting_down:
            await self._shutdown_manager.shutdown()
        else:
            await self._shutdown_manager.wait_for_shutdown()

        self._shutdown_manager.remove_signal_handlers()
        self._log.info(
            "dlob_publisher_stopped",
            shutdown_progress=self._shutdown_manager.progress.to_dict(),
        )

    async def _do_health_check(self) -> HealthCheckResult:
        status = await self._health_collector.get_health_status()
        if status["status"] == HealthStatus.UNHEALTHY.value:
            return HealthCheckResult.unhealthy(", ".join(status["issues"]), **status)
        if status["status"] == HealthStatus.DEGRADED.value:
            return HealthCheckResult.degraded(", ".join(status["issues"]), **status)
        return HealthCheckResult.healthy(**status)

    async def run_cycle_once(self) -> Optional[CycleReport]:
        """Refresh upstream and publish every market once.

        Returns:
            The cycle report, or None when the upstream refresh failed.

        Raises:
            FatalCondition: A kill switch tripped.
        """
        self._cycle_idle.clear()
        try:
            try:
                await self._source.refresh()
            except Exception as e:
                self._log.error(
                    "upstream_refresh_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return None

            report = await self._service.run_cycle()
            self._last_cycle_at = time.monotonic()
            return report
        finally:
            self._cycle_idle.set()

    async def refresh_loop(self) -> None:
        """Run cycles until shutdown is requested."""
        interval = self._settings.refresh_interval_ms / 1000
        shutdown_event = self._shutdown_manager.shutdown_event
        loop = asyncio.get_running_loop()

        while not shutdown_event.is_set():
            started = loop.time()
            await self.run_cycle_once()
            self._metrics.update_uptime(self.uptime_seconds)

            remaining = interval - (loop.time() - started)
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=max(remaining, 0.0))
            except asyncio.TimeoutError:
                pass

    def handle_fatal(self, condition: FatalCondition) -> int:
        """Record a kill-switch condition and return the process exit code."""
        self._fatal = condition
        self._metrics.record_kill_switch(condition.condition)
        self._log.critical(
            "kill_switch_triggered",
            message=condition.message,
            **condition.to_log_context(),
        )
        return KILL_SWITCH_EXIT_CODE

    async def run_forever(self) -> int:
        """Run until a shutdown signal or a kill switch.

        Returns:
            0 after a graceful shutdown, KILL_SWITCH_EXIT_CODE after a kill switch.
        """
        await self.start()
        try:
            await self.refresh_loop()
        except FatalCondition as condition:
            self._shutdown_manager.remove_signal_handlers()
            return self.handle_fatal(condition)

        await self.stop()
        return 0

    async def request_shutdown(self) -> None:
        """Trigger graceful shutdown from code."""
        self._log.info("shutdown_requested_programmatically")
        await self._shutdown_manager.shutdown()
