"""JobQueue scheduler adapter — implements SchedulerPort.

Wraps python-telegram-bot's JobQueue (APScheduler underneath) so the core
can register one-shot timers, fixed-interval polls and cron rules without
knowing about Telegram.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from telegram.ext import ContextTypes, Job, JobQueue

from focusbot.ports.scheduler_port import JobCallback

logger = logging.getLogger(__name__)


def _wrap(callback: JobCallback):
    """Adapt a zero-argument coroutine function to the JobQueue signature."""

    async def _job(context: ContextTypes.DEFAULT_TYPE) -> None:
        await callback()

    return _job


class JobQueueScheduler:
    """Telegram JobQueue implementation of SchedulerPort."""

    def __init__(self, job_queue: JobQueue) -> None:
        self._job_queue = job_queue

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def schedule_at(self, when: datetime, callback: JobCallback, name: str | None = None) -> Job:
        return self._job_queue.run_once(_wrap(callback), when=when, name=name)

    def schedule_interval(
        self,
        seconds: float,
        callback: JobCallback,
        first: float = 0.0,
        name: str | None = None,
    ) -> Job:
        return self._job_queue.run_repeating(
            _wrap(callback), interval=seconds, first=first, name=name,
        )

    def schedule_recurring(
        self,
        cron: str,
        timezone: str,
        callback: JobCallback,
        name: str | None = None,
    ) -> Job:
        trigger = CronTrigger.from_crontab(cron, timezone=ZoneInfo(timezone))
        return self._job_queue.run_custom(
            _wrap(callback), job_kwargs={"trigger": trigger}, name=name,
        )

    def cancel(self, handle: Job) -> None:
        if handle.removed:
            return
        try:
            handle.schedule_removal()
        except JobLookupError:
            # One-shot jobs are dropped by APScheduler once they have run
            logger.debug("Job %s already gone", handle.name)
