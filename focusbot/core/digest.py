"""
FocusBot — Daily digest and weekly cleanup.

Each user with the digest enabled gets one recurring job firing at their
configured HH:MM in their own time zone. The job is replaced whenever the
user's settings change (ensure_daily_job) and re-registered for everyone at
start-up, since jobs only live in process memory.

The weekly cleanup job permanently deletes tasks completed more than the
retention window ago.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from focusbot.core.clock import day_bounds, parse_hhmm, resolve_zone

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from focusbot.data.models import Event, Task
    from focusbot.data.store import Store
    from focusbot.ports.notification_port import NotificationPort
    from focusbot.ports.scheduler_port import SchedulerPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Summary text
# ---------------------------------------------------------------------------


def _day_month(dt: datetime) -> str:
    return f"{dt.day} {dt:%b}"


def build_daily_summary(
    tasks: list[Task],
    events: list[Event],
    now: datetime,
    tz: ZoneInfo,
) -> str:
    """Compose the digest text.

    Only open tasks with a due date are listed. Overdue ones are flagged and
    shown with full date, ones due today with the time only, later ones with
    day, month and time. Events are sorted by start time.
    """
    local_now = now.astimezone(tz)
    today_start, tomorrow_start = day_bounds(now, tz)

    due_tasks = [t for t in tasks if t.due_at is not None and not t.completed]
    todays_events = sorted(
        (e for e in events if today_start <= e.starts_at < tomorrow_start),
        key=lambda e: e.starts_at,
    )

    lines = [f"📅 *Digest for {local_now.day} {local_now:%B %Y}*", ""]

    if not due_tasks and not todays_events:
        lines.append("No tasks due and no events today. Have a great day! ✨")
        return "\n".join(lines)

    if due_tasks:
        lines.append(f"📋 *Tasks ({len(due_tasks)}):*")
        for task in due_tasks:
            due = task.due_at.astimezone(tz)
            if task.due_at < now:
                lines.append(f"• {task.title} — due {_day_month(due)} {due:%Y %H:%M} ⚠️ *OVERDUE*")
            elif task.due_at < tomorrow_start:
                lines.append(f"• {task.title} — due {due:%H:%M}")
            else:
                lines.append(f"• {task.title} — due {_day_month(due)} {due:%H:%M}")

    if todays_events:
        if due_tasks:
            lines.append("")
        lines.append(f"📆 *Events today ({len(todays_events)}):*")
        for event in todays_events:
            lines.append(f"• {event.starts_at.astimezone(tz):%H:%M} — {event.title}")
            if event.description:
                lines.append(f"  {event.description}")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class DigestScheduler:
    """Owns the per-user digest jobs and the weekly cleanup job."""

    def __init__(
        self,
        store: Store,
        notifier: NotificationPort,
        scheduler: SchedulerPort,
        timezone: str,
        cleanup_cron: str = "0 3 * * sun",
        retention_days: int = 7,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._scheduler = scheduler
        self._timezone = timezone
        self._cleanup_cron = cleanup_cron
        self._retention_days = retention_days
        self._jobs: dict[int, Any] = {}
        self._cleanup_job: Any | None = None

    def has_daily_job(self, user_id: int) -> bool:
        return user_id in self._jobs

    def cancel_daily_job(self, user_id: int) -> bool:
        job = self._jobs.pop(user_id, None)
        if job is None:
            return False
        self._scheduler.cancel(job)
        return True

    async def ensure_daily_job(self, user_id: int) -> bool:
        """(Re)register the user's digest job from current settings.

        Returns True if a job is registered afterwards, False when the digest
        is disabled or settings could not be read.
        """
        self.cancel_daily_job(user_id)

        try:
            user_settings = await self._store.get_settings(user_id)
        except Exception:
            logger.exception("Could not read settings for user %d, no digest job", user_id)
            return False

        if not user_settings.daily_digest:
            logger.info("Daily digest disabled for user %d", user_id)
            return False

        try:
            hour, minute = parse_hhmm(user_settings.daily_digest_time)
        except ValueError:
            logger.warning(
                "Bad digest time %r for user %d, using 09:00",
                user_settings.daily_digest_time, user_id,
            )
            hour, minute = 9, 0

        tz = resolve_zone(user_settings.timezone, self._timezone)
        cron = f"{minute} {hour} * * *"

        async def _digest_job() -> None:
            await self.send_daily_summary(user_id)

        # a concurrent call may have registered while settings were loading
        self.cancel_daily_job(user_id)
        self._jobs[user_id] = self._scheduler.schedule_recurring(
            cron, tz.key, _digest_job, name=f"digest:{user_id}",
        )
        logger.info("Daily digest for user %d scheduled at %02d:%02d %s", user_id, hour, minute, tz.key)
        return True

    async def restore_daily_jobs(self) -> int:
        """Register digest jobs for every known user. Returns how many were set."""
        try:
            users = await self._store.list_users()
        except Exception:
            logger.exception("Could not list users to restore digest jobs")
            return 0

        restored = 0
        for user in users:
            if await self.ensure_daily_job(user.telegram_user_id):
                restored += 1
        logger.info("Restored %d daily digest job(s)", restored)
        return restored

    async def send_daily_summary(self, user_id: int) -> str | None:
        """Job body. Returns the text sent, or None if nothing was sent."""
        try:
            user_settings = await self._store.get_settings(user_id)
            # the setting may have been switched off since the job was scheduled
            if not user_settings.daily_digest:
                return None

            tasks = await self._store.get_tasks(user_id, include_completed=False)
            events = await self._store.get_events(user_id)
        except Exception:
            logger.exception("Failed to load digest data for user %d", user_id)
            return None

        tz = resolve_zone(user_settings.timezone, self._timezone)
        summary = build_daily_summary(tasks, events, self._scheduler.now(), tz)

        try:
            await self._notifier.send_message(user_id, summary, parse_mode="Markdown")
        except Exception:
            logger.exception("Failed to send daily digest to user %d", user_id)
            return None

        logger.info("Daily digest sent to user %d", user_id)
        return summary

    # ------------------------------------------------------------------
    # Weekly cleanup
    # ------------------------------------------------------------------

    def start_task_cleanup(self) -> None:
        if self._cleanup_job is not None:
            self._scheduler.cancel(self._cleanup_job)
        self._cleanup_job = self._scheduler.schedule_recurring(
            self._cleanup_cron, self._timezone, self._cleanup_job_body, name="task_cleanup",
        )
        logger.info("Task cleanup scheduled (%s %s)", self._cleanup_cron, self._timezone)

    async def _cleanup_job_body(self) -> None:
        await self.cleanup_old_tasks()

    async def cleanup_old_tasks(self) -> int:
        try:
            deleted = await self._store.cleanup_old_completed_tasks(
                days=self._retention_days, now=self._scheduler.now(),
            )
        except Exception:
            logger.exception("Error while cleaning up completed tasks")
            return 0
        logger.info("Cleanup finished: deleted %d old completed task(s)", deleted)
        return deleted
