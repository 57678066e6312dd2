"""Async publish/subscribe bus for engine events.

The engine publishes; status displays and the notification subsystem
subscribe. Handlers receive `(event_type, data)` and never see mutable
engine state, only the snapshot or plain dicts carried in `data`.
"""

import asyncio
from collections import defaultdict
from typing import Any, Callable, Coroutine

from .logging import get_logger

logger = get_logger("utils.event_bus")

EVENT_TYPES = frozenset({
    "snapshot_updated",
    "vpn_connected",
    "vpn_disconnected",
    "routes_applied",
    "routes_removed",
    "dns_refresh_completed",
    "route_verification_failed",
    "helper_unavailable",
    "domain_added",
    "domain_removed",
    "service_toggled",
    "network_changed",
})

Handler = Callable[[str, Any], Coroutine[Any, Any, Any]]


class EventBus:
    """Queue-backed event bus; publishing never blocks the engine."""

    def __init__(self, queue_size: int = 1000, handler_timeout: float = 5.0):
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._wildcard_subscribers: list[Handler] = []
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._handler_timeout = handler_timeout
        self._running = False
        self._dispatch_task: asyncio.Task | None = None
        self._total_published = 0
        self._total_dispatched = 0
        self._total_dropped = 0

    def subscribe(self, event_type: str, handler: Handler) -> None:
        """Subscribe to one event type, or '*' for all of them."""
        if event_type == "*":
            if handler not in self._wildcard_subscribers:
                self._wildcard_subscribers.append(handler)
            return
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type!r}")
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug("event_bus_subscriber_added", event_type=event_type)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        if event_type == "*":
            if handler in self._wildcard_subscribers:
                self._wildcard_subscribers.remove(handler)
        elif handler in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(handler)

    def publish(self, event_type: str, data: Any = None) -> None:
        """Queue an event. Drops it (and counts the drop) when the queue is full."""
        try:
            self._queue.put_nowait((event_type, data))
            self._total_published += 1
        except asyncio.QueueFull:
            self._total_dropped += 1
            logger.warning("event_bus_queue_full", event_type=event_type)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info("event_bus_started")

    async def stop(self) -> None:
        self._running = False
        if self._dispatch_task and not self._dispatch_task.done():
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
        self._dispatch_task = None
        logger.info("event_bus_stopped", published=self._total_published, dispatched=self._total_dispatched)

    async def drain(self) -> None:
        """Dispatch everything currently queued, in order, on the caller's task."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self._dispatch_event(*event)
            self._total_dispatched += 1

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                await self._dispatch_event(*event)
                self._total_dispatched += 1
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("event_bus_dispatch_error", error=str(e))

    async def _dispatch_event(self, event_type: str, data: Any) -> None:
        handlers = list(self._subscribers.get(event_type, [])) + list(self._wildcard_subscribers)
        for handler in handlers:
            try:
                await asyncio.wait_for(handler(event_type, data), timeout=self._handler_timeout)
            except asyncio.TimeoutError:
                logger.warning("event_bus_handler_timeout", event_type=event_type)
            except Exception as e:
                logger.error("event_bus_handler_error", event_type=event_type, error=str(e))

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "total_published": self._total_published,
            "total_dispatched": self._total_dispatched,
            "total_dropped": self._total_dropped,
            "queue_size": self._queue.qsize(),
        }
