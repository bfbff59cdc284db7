"""
backend/oddsline/services/task_runner.py

Purpose:
    Injectable runner for the pipeline's periodic background tasks. Each task
    owns its own in-progress mutex: a trigger arriving while the previous run
    is still going is skipped (warning + counter), never stacked and never
    blocked behind another task. Runs can be cancelled, failures are logged
    and counted instead of propagating into the scheduler.

Dependencies:
    - apscheduler (AsyncIOScheduler)
    - oddsline.monitoring.pipeline_metrics
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from oddsline.monitoring.pipeline_metrics import METRIC_TASK_DURATION, METRIC_TASK_RUNS
from oddsline.utils import utcnow

logger = logging.getLogger("oddsline.task_runner")

TaskFunc = Callable[[], Awaitable[Any]]


class GuardedTask:
    """One periodic task with a per-task overlap guard and a cancel token."""

    def __init__(self, name: str, func: TaskFunc) -> None:
        self.name = name
        self._func = func
        self._lock = asyncio.Lock()
        self._current: asyncio.Task | None = None
        self._cancel_requested = False
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.cancelled = 0
        self.last_started_at: datetime | None = None
        self.last_finished_at: datetime | None = None
        self.last_error: str | None = None
        self.last_result: Any = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> bool:
        """Execute once. Returns False when skipped because a run is in progress."""
        # No await between the check and the acquire: the pair is atomic on the loop.
        if self._lock.locked():
            self.skipped += 1
            METRIC_TASK_RUNS.labels(task=self.name, outcome="skipped").inc()
            logger.warning("Task %s is still running; skipping this trigger", self.name)
            return False

        async with self._lock:
            self.runs += 1
            self._cancel_requested = False
            self.last_started_at = utcnow()
            self._current = asyncio.create_task(self._func(), name=f"task_{self.name}")
            loop = asyncio.get_running_loop()
            started = loop.time()
            outcome = "ok"
            try:
                self.last_result = await self._current
                self.last_error = None
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    raise
                outcome = "cancelled"
                self.cancelled += 1
                logger.info("Task %s cancelled mid-run", self.name)
            except Exception as exc:
                outcome = "failed"
                self.failures += 1
                self.last_error = str(exc)
                logger.exception("Task %s failed", self.name)
            finally:
                self._current = None
                self.last_finished_at = utcnow()
                METRIC_TASK_RUNS.labels(task=self.name, outcome=outcome).inc()
                if outcome == "ok":
                    METRIC_TASK_DURATION.labels(task=self.name).observe(loop.time() - started)
        return True

    def cancel(self) -> bool:
        """Cancel the in-flight run, if any."""
        current = self._current
        if current is None or current.done():
            return False
        self._cancel_requested = True
        current.cancel()
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "cancelled": self.cancelled,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_error": self.last_error,
        }


class TaskRunner:
    """Registry of GuardedTasks, scheduled on an (injectable) AsyncIOScheduler."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler()
        self._tasks: dict[str, GuardedTask] = {}
        self._specs: dict[str, tuple[str, dict[str, Any]]] = {}

    def register(self, name: str, func: TaskFunc, *, trigger: str = "interval", **trigger_kwargs: Any) -> GuardedTask:
        task = GuardedTask(name, func)
        self._tasks[name] = task
        self._specs[name] = (trigger, trigger_kwargs)
        return task

    def get(self, name: str) -> GuardedTask:
        return self._tasks[name]

    @property
    def names(self) -> list[str]:
        return sorted(self._tasks)

    async def trigger(self, name: str) -> bool:
        return await self._tasks[name].run()

    def start(self) -> int:
        added = 0
        for name, task in self._tasks.items():
            trigger, trigger_kwargs = self._specs[name]
            self._scheduler.add_job(
                task.run,
                trigger,
                id=name,
                replace_existing=True,
                coalesce=True,
                # Overlap is detected and counted by GuardedTask, not APScheduler.
                max_instances=2,
                **trigger_kwargs,
            )
            added += 1
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Task runner started with %d scheduled tasks", added)
        return added

    def shutdown(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def stats(self) -> dict[str, dict[str, Any]]:
        return {name: self._tasks[name].stats() for name in self.names}
