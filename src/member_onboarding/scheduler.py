"""
Scheduler: one-second ticks for the welcome countdown.

Infrastructure layer. Uses APScheduler (3.x) with the asyncio scheduler so
tick callbacks run on the event loop thread, never in a worker thread.

    SchedulerTicker.schedule(callback, 1.0)
      → interval job "welcome_countdown_<n>"
      → returns a cancel function that removes the job
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = structlog.get_logger()

type Cancel = Callable[[], None]


@runtime_checkable
class Ticker(Protocol):
    """Calls ``callback`` every ``interval_seconds`` until cancelled."""

    def schedule(self, callback: Callable[[], None], interval_seconds: float) -> Cancel: ...


def create_scheduler() -> AsyncIOScheduler:
    """An asyncio scheduler that drops missed ticks instead of replaying them."""
    return AsyncIOScheduler(job_defaults={"coalesce": True, "max_instances": 1})


class SchedulerTicker:
    """
    Ticker backed by an APScheduler interval job.

    The scheduler is started on first use, which must happen while an event
    loop is running.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or create_scheduler()
        self._ids = itertools.count(1)

    def schedule(self, callback: Callable[[], None], interval_seconds: float) -> Cancel:
        if not self._scheduler.running:
            self._scheduler.start()

        async def _tick() -> None:
            callback()

        job = self._scheduler.add_job(
            _tick,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=f"welcome_countdown_{next(self._ids)}",
            name="Welcome countdown tick",
            replace_existing=True,
        )
        log.debug("scheduler.job_added", job_id=job.id, interval_seconds=interval_seconds)

        def _cancel() -> None:
            try:
                job.remove()
            except JobLookupError:
                log.debug("scheduler.job_already_removed", job_id=job.id)

        return _cancel

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            log.info("scheduler.shutdown")
