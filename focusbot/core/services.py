"""
FocusBot — Service composition.

Builds the process-wide scheduling services once and wires them to the
store, the notifier and the scheduler port. The bot keeps the resulting
Services object in bot_data; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from focusbot.core.digest import DigestScheduler
from focusbot.core.pomodoro import PomodoroManager, RenderCallback
from focusbot.core.reminders import ReminderChecker

if TYPE_CHECKING:
    from focusbot.data.store import Store
    from focusbot.ports.notification_port import NotificationPort
    from focusbot.ports.scheduler_port import SchedulerPort

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: Store
    pomodoro: PomodoroManager
    reminders: ReminderChecker
    digest: DigestScheduler


def build_services(
    store: Store,
    notifier: NotificationPort,
    scheduler: SchedulerPort,
    render: RenderCallback | None = None,
    finished_markup: Any | None = None,
) -> Services:
    from focusbot.config import settings

    return Services(
        store=store,
        pomodoro=PomodoroManager(
            store, notifier, scheduler, render=render, finished_markup=finished_markup,
        ),
        reminders=ReminderChecker(
            store,
            notifier,
            scheduler,
            timezone=settings.TIMEZONE,
            interval_seconds=settings.REMINDER_CHECK_INTERVAL_SECONDS,
            dedup_hours=settings.REMINDER_DEDUP_HOURS,
        ),
        digest=DigestScheduler(
            store,
            notifier,
            scheduler,
            timezone=settings.TIMEZONE,
            cleanup_cron=settings.CLEANUP_CRON,
            retention_days=settings.TASK_RETENTION_DAYS,
        ),
    )


async def start_background_jobs(services: Services) -> None:
    """Start-up sequence: reconcile, restore digests, arm reminders, cleanup."""
    await services.pomodoro.reconcile_on_startup()
    await services.digest.restore_daily_jobs()
    await services.reminders.ensure_started()
    services.reminders.schedule_daily_arm()
    services.digest.start_task_cleanup()
    logger.info("Background jobs started")
