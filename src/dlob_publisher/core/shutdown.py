"""
Graceful shutdown handling.

On SIGTERM/SIGINT the publisher shuts down in order:
1. Stop the refresh loop (the in-flight cycle finishes)
2. Close connections (health server, Redis)
3. Flush metrics
4. Cleanup

The kill switch does not go through here; a fatal condition exits the
process straight from the run loop.
"""

import asyncio
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

import structlog

log = structlog.get_logger()


class ShutdownPhase(str, Enum):
    """Phases of graceful shutdown."""

    RUNNING = "running"
    SIGNAL_RECEIVED = "signal_received"
    STOPPING_REFRESH = "stopping_refresh"
    CLOSING_CONNECTIONS = "closing_connections"
    FLUSHING_DATA = "flushing_data"
    CLEANUP = "cleanup"
    COMPLETED = "completed"


@dataclass
class ShutdownProgress:
    """Tracks progress of graceful shutdown."""

    phase: ShutdownPhase = ShutdownPhase.RUNNING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    signal_received: Optional[str] = None
    refresh_stopped: bool = False
    connections_closed: bool = False
    metrics_flushed: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def is_shutting_down(self) -> bool:
        return self.phase not in (ShutdownPhase.RUNNING, ShutdownPhase.COMPLETED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "signal_received": self.signal_received,
            "refresh_stopped": self.refresh_stopped,
            "connections_closed": self.connections_closed,
            "metrics_flushed": self.metrics_flushed,
            "duration_seconds": self.duration_seconds,
            "errors": self.errors,
        }


ShutdownCallback = Callable[[], Coroutine[Any, Any, None]]


class ShutdownManager:
    """Coordinates graceful shutdown across components.

    Usage:
        manager = ShutdownManager(timeout_seconds=10.0)
        manager.on_stop_refresh(app.stop_refresh_loop)
        manager.on_close_connections(sink.stop)
        manager.on_flush_data(flush_metrics)
        manager.install_signal_handlers()

        # Or trigger shutdown programmatically
        await manager.shutdown()
    """

    DEFAULT_TIMEOUT_SECONDS = 10.0

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        """Initialize shutdown manager.

        Args:
            timeout_seconds: Timeout applied to each shutdown callback.
        """
        self._timeout = timeout_seconds
        self._progress = ShutdownProgress()
        self._shutdown_event = asyncio.Event()
        self._completed_event = asyncio.Event()
        self._log = log.bind(component="shutdown_manager")

        self._stop_refresh_callbacks: list[ShutdownCallback] = []
        self._close_connections_callbacks: list[ShutdownCallback] = []
        self._flush_data_callbacks: list[ShutdownCallback] = []
        self._cleanup_callbacks: list[ShutdownCallback] = []

    @property
    def progress(self) -> ShutdownProgress:
        return self._progress

    @property
    def is_shutting_down(self) -> bool:
        return self._progress.is_shutting_down

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown_event

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Install SIGTERM and SIGINT handlers on the running loop."""
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._log.warning("no_event_loop_for_signal_handlers")
                return

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._handle_signal(s)),
            )

        self._log.info("signal_handlers_installed", signals=["SIGTERM", "SIGINT"])

    def remove_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (ValueError, RuntimeError):
                pass

    async def _handle_signal(self, sig: signal.Signals) -> None:
        signal_name = sig.name if hasattr(sig, "name") else str(sig)
        self._log.info("shutdown_signal_received", signal=signal_name)

        self._progress.signal_received = signal_name
        await self.shutdown()

    def on_stop_refresh(self, callback: ShutdownCallback) -> None:
        """Register callback for the first phase: stop producing cycles."""
        self._stop_refresh_callbacks.append(callback)

    def on_close_connections(self, callback: ShutdownCallback) -> None:
        self._close_connections_callbacks.append(callback)

    def on_flush_data(self, callback: ShutdownCallback) -> None:
        self._flush_data_callbacks.append(callback)

    def on_cleanup(self, callback: ShutdownCallback) -> None:
        self._cleanup_callbacks.append(callback)

    async def shutdown(self) -> None:
        """Run every shutdown phase in order.

        Errors and timeouts in individual callbacks are recorded in the
        progress and do not stop later phases.
        """
        if self._progress.is_shutting_down or self._completed_event.is_set():
            self._log.warning("shutdown_already_in_progress")
            return

        self._progress.started_at = datetime.now(timezone.utc)
        self._progress.phase = ShutdownPhase.SIGNAL_RECEIVED
        self._log.info("graceful_shutdown_starting", timeout_seconds=self._timeout)

        # the refresh loop waits on this event between cycles
        self._shutdown_event.set()

        try:
            await self._run_phase(
                ShutdownPhase.STOPPING_REFRESH,
                self._stop_refresh_callbacks,
                "Stopping refresh loop",
            )
            await self._run_phase(
                ShutdownPhase.CLOSING_CONNECTIONS,
                self._close_connections_callbacks,
                "Closing connections",
            )
            await self._run_phase(
                ShutdownPhase.FLUSHING_DATA,
                self._flush_data_callbacks,
                "Flushing data",
            )
            await self._run_phase(
                ShutdownPhase.CLEANUP,
                self._cleanup_callbacks,
                "Cleanup",
            )
        finally:
            self._progress.phase = ShutdownPhase.COMPLETED
            self._progress.completed_at = datetime.now(timezone.utc)
            self._completed_event.set()

            self._log.info(
                "graceful_shutdown_completed",
                duration_seconds=self._progress.duration_seconds,
                errors=len(self._progress.errors),
                progress=self._progress.to_dict(),
            )

    async def _run_phase(
        self,
        phase: ShutdownPhase,
        callbacks: list[ShutdownCallback],
        description: str,
    ) -> None:
        self._progress.phase = phase
        self._log.info(
            "shutdown_phase_starting",
            phase=phase.value,
            description=description,
            callback_count=len(callbacks),
        )

        for i, callback in enumerate(callbacks):
            callback_name = getattr(callback, "__name__", f"callback_{i}")
            try:
                await asyncio.wait_for(callback(), timeout=self._timeout)
            except asyncio.TimeoutError:
                self._log.warning(
                    "shutdown_callback_timeout",
                    phase=phase.value,
                    callback=callback_name,
                )
                self._progress.errors.append(f"Timeout: {callback_name}")
            except Exception as e:
                self._log.warning(
                    "shutdown_callback_error",
                    phase=phase.value,
                    callback=callback_name,
                    error=str(e),
                )
                self._progress.errors.append(f"Error in {callback_name}: {str(e)}")

        if phase == ShutdownPhase.STOPPING_REFRESH:
            self._progress.refresh_stopped = True
        elif phase == ShutdownPhase.CLOSING_CONNECTIONS:
            self._progress.connections_closed = True
        elif phase == ShutdownPhase.FLUSHING_DATA:
            self._progress.metrics_flushed = True

        self._log.info("shutdown_phase_completed", phase=phase.value)

    async def wait_for_shutdown(self) -> None:
        """Wait until every shutdown phase has run."""
        await self._completed_event.wait()
