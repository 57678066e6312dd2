"""Recurring background work: VPN status checks and DNS refresh."""

import asyncio
import time
from typing import Callable, Optional

from .engine import BypassEngine
from .utils.logging import get_logger

logger = get_logger("scheduler")


class RefreshScheduler:
    """Periodically re-resolves bypassed domains while the VPN is connected.

    The interval is read from the engine configuration on every tick, so a
    settings change takes effect from the next run. A tick while
    disconnected (or with auto refresh off) does nothing, but the next run
    time still advances.
    """

    def __init__(self, engine: BypassEngine, clock: Callable[[], float] = time.monotonic):
        self._engine = engine
        self._clock = clock
        self._running = False
        self._busy = False
        self._next_run: Optional[float] = None
        self._manual_tasks: set[asyncio.Task] = set()

    @property
    def interval(self) -> float:
        return self._engine.config.dns_refresh_interval

    @property
    def next_run(self) -> Optional[float]:
        return self._next_run

    @property
    def busy(self) -> bool:
        return self._busy

    def reschedule(self) -> None:
        self._next_run = self._clock() + self.interval

    async def tick(self) -> bool:
        """One scheduled run. Returns True if a refresh was attempted."""
        self.reschedule()
        if self._busy:
            logger.debug("refresh_tick_skipped_busy")
            return False
        if not self._engine.config.auto_dns_refresh:
            return False
        if not self._engine.snapshot.vpn.connected:
            logger.debug("refresh_tick_noop_disconnected")
            return False

        self._busy = True
        try:
            await self._engine.refresh_routes()
        except Exception as e:
            logger.error("refresh_failed", error=str(e))
        finally:
            self._busy = False
        return True

    def trigger_now(self) -> asyncio.Task:
        """Start a refresh immediately; the engine's guard serializes it."""
        logger.info("refresh_triggered_manually")
        task = asyncio.create_task(self._engine.refresh_routes())
        self._manual_tasks.add(task)
        task.add_done_callback(self._manual_tasks.discard)
        return task

    async def run(self) -> None:
        self._running = True
        self.reschedule()
        logger.info("refresh_scheduler_started", interval=self.interval)
        while self._running:
            delay = max(0.0, (self._next_run or self._clock()) - self._clock())
            await asyncio.sleep(min(delay, 60.0))
            if self._running and self._clock() >= (self._next_run or 0.0):
                await self.tick()

    def stop(self) -> None:
        self._running = False
        logger.info("refresh_scheduler_stopped")


class StatusMonitor:
    """Polls VPN status and logs a watchdog line at a long interval."""

    def __init__(
        self,
        engine: BypassEngine,
        interval: float = 30.0,
        watchdog_interval: float = 12 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._engine = engine
        self._interval = interval
        self._watchdog_interval = watchdog_interval
        self._clock = clock
        self._running = False
        self._last_watchdog: Optional[float] = None

    async def poll(self) -> None:
        try:
            await self._engine.check_status()
        except Exception as e:
            logger.error("status_check_failed", error=str(e))
        self._maybe_watchdog()

    def _maybe_watchdog(self) -> None:
        now = self._clock()
        if self._last_watchdog is None:
            self._last_watchdog = now
            return
        if now - self._last_watchdog < self._watchdog_interval:
            return
        self._last_watchdog = now
        snapshot = self._engine.snapshot
        logger.info(
            "watchdog",
            uptime_seconds=round(self._engine.uptime_seconds()),
            vpn_connected=snapshot.vpn.connected,
            active_routes=snapshot.route_count,
        )

    async def run(self) -> None:
        self._running = True
        logger.info("status_monitor_started", interval=self._interval)
        while self._running:
            await asyncio.sleep(self._interval)
            if self._running:
                await self.poll()

    def stop(self) -> None:
        self._running = False
        logger.info("status_monitor_stopped")
