"""
backend/oddsline/services/event_bus.py

Purpose:
    Lightweight in-memory event bus for process-local fan-out. Publishing is
    synchronous and never blocks: events go onto a bounded ingress queue and a
    dispatcher copies them onto one bounded queue per subscriber, each drained
    by its own worker tasks. Full queues drop with a warning; a topic with no
    subscribers simply discards.

Dependencies:
    - asyncio
    - oddsline.config
    - oddsline.monitoring.pipeline_metrics
    - oddsline.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from oddsline.config import settings
from oddsline.monitoring.pipeline_metrics import METRIC_BUS_EVENTS
from oddsline.services.event_models import BaseEvent, EventType, normalize_event_time
from oddsline.utils import ensure_utc, utcnow

logger = logging.getLogger("oddsline.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]
_METRIC_KEYS = ("published", "handled", "failed", "dropped")
_LAG_SAMPLES = 500
_DRAIN_POLL_SECONDS = 0.01


def _type_key(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


@dataclass
class _Subscription:
    event_type: str
    handler_name: str
    handler: AsyncEventHandler
    concurrency: int
    queue: asyncio.Queue[BaseEvent]
    workers: list[asyncio.Task]
    handled_total: int = 0
    failed_total: int = 0
    dropped_total: int = 0
    max_queue_depth_seen: int = 0


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
        enabled: bool = True,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))
        self._enabled = bool(enabled)

        self._ingress: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=self._ingress_maxsize)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False
        self._lock = asyncio.Lock()
        self._in_flight = 0

        self._totals = {metric: 0 for metric in _METRIC_KEYS}
        self._per_event_type: dict[str, dict[str, int]] = defaultdict(lambda: {m: 0 for m in _METRIC_KEYS})
        self._max_ingress_depth_seen = 0
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))
        self._lag_samples: deque[int] = deque(maxlen=_LAG_SAMPLES)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            for subs in self._subscriptions.values():
                for sub in subs:
                    if not sub.workers:
                        sub.workers.extend(self._spawn_workers(sub, sub.concurrency))
            self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
            logger.info("Event bus started")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            tasks: list[asyncio.Task] = []
            if self._dispatcher_task is not None:
                tasks.append(self._dispatcher_task)
                self._dispatcher_task = None
            for subs in self._subscriptions.values():
                for sub in subs:
                    tasks.extend(sub.workers)
                    sub.workers.clear()
            for task in tasks:
                task.cancel()
            for task in tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("Event bus stopped")

    async def drain(self, timeout: float) -> bool:
        """Wait until every queued event has been handled, or ``timeout`` passes.

        Returns True when the bus went idle. Called before ``stop()`` so a
        shutdown does not discard settlement or broadcast work already queued.
        """
        if not self._running:
            return self._idle()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while not self._idle():
            if loop.time() >= deadline:
                logger.warning("Event bus drain timed out with %d event(s) pending", self._pending())
                return False
            await asyncio.sleep(_DRAIN_POLL_SECONDS)
        return True

    def subscribe(
        self,
        event_type: EventType | str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int | None = None,
    ) -> None:
        type_key = _type_key(EventType(event_type))
        worker_count = max(1, int(concurrency or self._default_concurrency))
        sub = _Subscription(
            event_type=type_key,
            handler_name=handler_name,
            handler=handler,
            concurrency=worker_count,
            queue=asyncio.Queue(maxsize=self._handler_maxsize),
            workers=[],
        )
        self._subscriptions[type_key].append(sub)
        if self._running:
            sub.workers.extend(self._spawn_workers(sub, worker_count))

    def publish(self, event: BaseEvent) -> bool:
        """Fire-and-forget. Returns False when the event was dropped or the bus is disabled."""
        if not self._enabled:
            return False
        normalized = normalize_event_time(event)
        type_key = _type_key(normalized.event_type)
        try:
            self._ingress.put_nowait(normalized)
        except asyncio.QueueFull:
            self._count("dropped", type_key)
            logger.warning("Event bus ingress queue full; dropping event_type=%s", type_key)
            return False
        self._count("published", type_key)
        self._max_ingress_depth_seen = max(self._max_ingress_depth_seen, self._ingress.qsize())
        return True

    def subscriber_count(self, event_type: EventType | str) -> int:
        return len(self._subscriptions.get(_type_key(event_type), []))

    def stats(self) -> dict[str, Any]:
        per_handler: dict[str, dict[str, Any]] = {}
        for type_key, subs in self._subscriptions.items():
            for sub in subs:
                depth = sub.queue.qsize()
                per_handler[f"{type_key}:{sub.handler_name}"] = {
                    "event_type": type_key,
                    "name": sub.handler_name,
                    "concurrency": sub.concurrency,
                    "queue_depth": depth,
                    "queue_limit": self._handler_maxsize,
                    "handled_total": sub.handled_total,
                    "failed_total": sub.failed_total,
                    "dropped_total": sub.dropped_total,
                    "max_queue_depth_seen": sub.max_queue_depth_seen,
                }
        return {
            "enabled": self._enabled,
            "running": self._running,
            "published_total": self._totals["published"],
            "handled_total": self._totals["handled"],
            "failed_total": self._totals["failed"],
            "dropped_total": self._totals["dropped"],
            "ingress_queue_depth": self._ingress.qsize(),
            "ingress_queue_limit": self._ingress_maxsize,
            "in_flight": self._in_flight,
            "max_ingress_queue_depth_seen": self._max_ingress_depth_seen,
            "latency_ms": self._latency_summary(),
            "per_handler": per_handler,
            "per_event_type": {k: dict(v) for k, v in sorted(self._per_event_type.items())},
            "recent_errors": list(self._errors),
        }

    async def _dispatch_loop(self) -> None:
        while self._running:
            event = await self._ingress.get()
            type_key = _type_key(event.event_type)
            for sub in self._subscriptions.get(type_key, []):
                try:
                    sub.queue.put_nowait(event)
                    sub.max_queue_depth_seen = max(sub.max_queue_depth_seen, sub.queue.qsize())
                except asyncio.QueueFull:
                    sub.dropped_total += 1
                    self._count("dropped", type_key)
                    logger.warning(
                        "Event bus handler queue full; dropping event_type=%s handler=%s",
                        type_key,
                        sub.handler_name,
                    )

    def _spawn_workers(self, sub: _Subscription, worker_count: int) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.event_type}_{sub.handler_name}_{idx}")
            for idx in range(worker_count)
        ]

    async def _handler_loop(self, sub: _Subscription) -> None:
        while self._running:
            event = await sub.queue.get()
            lag_ms = int((utcnow() - ensure_utc(event.occurred_at)).total_seconds() * 1000)
            self._lag_samples.append(max(0, lag_ms))
            self._in_flight += 1
            try:
                await sub.handler(event)
                sub.handled_total += 1
                self._count("handled", sub.event_type)
            except Exception as exc:
                sub.failed_total += 1
                self._count("failed", sub.event_type)
                self._errors.append({
                    "event_id": event.event_id,
                    "event_type": sub.event_type,
                    "source": event.source,
                    "handler_name": sub.handler_name,
                    "correlation_id": event.correlation_id,
                    "ts": utcnow().isoformat(),
                    "processing_lag_ms": lag_ms,
                    "error": str(exc),
                })
                logger.error(
                    "Event handler failed event_id=%s event_type=%s handler=%s correlation_id=%s error=%s",
                    event.event_id,
                    sub.event_type,
                    sub.handler_name,
                    event.correlation_id,
                    str(exc),
                    exc_info=True,
                )
            finally:
                self._in_flight -= 1

    def _count(self, metric: str, type_key: str) -> None:
        self._totals[metric] += 1
        self._per_event_type[type_key][metric] += 1
        METRIC_BUS_EVENTS.labels(event_type=type_key, outcome=metric).inc()

    def _pending(self) -> int:
        queued = sum(sub.queue.qsize() for subs in self._subscriptions.values() for sub in subs)
        return self._ingress.qsize() + queued + self._in_flight

    def _idle(self) -> bool:
        return self._pending() == 0

    def _latency_summary(self) -> dict[str, float]:
        if not self._lag_samples:
            return {"avg": 0.0, "p50": 0.0, "p95": 0.0}
        values = sorted(self._lag_samples)
        n = len(values)
        return {
            "avg": round(sum(values) / n, 2),
            "p50": float(values[min(n - 1, int(0.50 * (n - 1)))]),
            "p95": float(values[min(n - 1, int(0.95 * (n - 1)))]),
        }


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
    enabled=settings.EVENT_BUS_ENABLED,
)
