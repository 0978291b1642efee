"""
FocusBot — Event reminders.

A fixed-interval poll over today's events that have a reminder lead. An
event is announced once it is within its lead window:

    0 < starts_at - now <= reminder_minutes + one poll interval

The extra interval is the grace period that keeps a boundary falling between
two polls from being missed. Sent reminders are remembered per event
occurrence in an ExpiringSet, so an event is announced at most once per
process lifetime; a failed send is forgotten again so the next poll inside
the window retries. The memory does not survive a restart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from focusbot.core.clock import day_bounds, resolve_zone
from focusbot.core.expiring_set import ExpiringSet, ReminderKey

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from focusbot.data.models import Event
    from focusbot.data.store import Store
    from focusbot.ports.notification_port import NotificationPort
    from focusbot.ports.scheduler_port import SchedulerPort

logger = logging.getLogger(__name__)

ARM_CRON = "1 0 * * *"


def reminder_due(
    starts_at: datetime,
    reminder_minutes: int,
    now: datetime,
    grace: timedelta,
) -> bool:
    """True while the event is ahead of us and inside its lead window (+ grace)."""
    remaining = starts_at - now
    return timedelta(0) < remaining <= timedelta(minutes=reminder_minutes) + grace


class ReminderChecker:
    """Process-wide reminder poller. Once started it runs until shutdown."""

    def __init__(
        self,
        store: Store,
        notifier: NotificationPort,
        scheduler: SchedulerPort,
        timezone: str,
        interval_seconds: int = 60,
        dedup_hours: int = 24,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._scheduler = scheduler
        self._timezone = timezone
        self._interval = timedelta(seconds=interval_seconds)
        self._dedup_ttl = timedelta(hours=dedup_hours)
        self._sent: ExpiringSet[ReminderKey] = ExpiringSet()
        self._job: Any | None = None
        self._arm_job: Any | None = None
        self._checking = False

    @property
    def running(self) -> bool:
        return self._job is not None

    @property
    def sent_keys(self) -> ExpiringSet[ReminderKey]:
        return self._sent

    def _zone(self) -> ZoneInfo:
        return resolve_zone(self._timezone, self._timezone)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin polling now and every interval after. Idempotent."""
        if self._job is not None:
            return
        logger.info(
            "Starting reminder checker (every %d s)", int(self._interval.total_seconds()),
        )
        self._job = self._scheduler.schedule_interval(
            self._interval.total_seconds(), self.check, first=0, name="reminder_checker",
        )

    async def has_events_today(self) -> bool:
        try:
            start, end = day_bounds(self._scheduler.now(), self._zone())
            return await self._store.count_reminder_events(start, end) > 0
        except Exception:
            logger.exception("Error while looking for today's reminder events")
            return False

    async def ensure_started(self) -> bool:
        """Start polling only if today has events with reminders."""
        if self._job is not None:
            return True
        if await self.has_events_today():
            logger.info("Found events with reminders today, starting checker")
            self.start()
            return True
        logger.info("No events with reminders today, checker not started")
        return False

    async def _arm(self) -> None:
        await self.ensure_started()

    def schedule_daily_arm(self) -> None:
        """Re-run ensure_started() shortly after every local midnight."""
        if self._arm_job is not None:
            self._scheduler.cancel(self._arm_job)
        self._arm_job = self._scheduler.schedule_recurring(
            ARM_CRON, self._timezone, self._arm, name="reminder_arm",
        )

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def check(self) -> int:
        """One poll. Returns the number of reminders delivered; never raises."""
        if self._checking:
            logger.warning("Previous reminder check still running, skipping this tick")
            return 0
        self._checking = True
        try:
            return await self._check()
        except Exception:
            logger.exception("Error while checking reminders")
            return 0
        finally:
            self._checking = False

    async def _check(self) -> int:
        now = self._scheduler.now()
        evicted = self._sent.purge(now)
        if evicted:
            logger.debug("Evicted %d expired reminder keys", evicted)

        start, end = day_bounds(now, self._zone())
        events = await self._store.get_reminder_events(start, end)
        if events:
            logger.debug("Checking %d event(s) with reminders for today", len(events))

        sent = 0
        for event in events:
            if not reminder_due(event.starts_at, event.reminder_minutes, now, self._interval):
                continue

            key = ReminderKey.for_event(event.user_id, event.id, event.starts_at)
            if key in self._sent:
                continue

            self._sent.add(key, event.starts_at + self._dedup_ttl)
            try:
                text = await self._format_reminder(event)
                await self._notifier.send_message(event.user_id, text)
            except Exception:
                logger.exception(
                    "Failed to send reminder for event #%d to user %d", event.id, event.user_id,
                )
                self._sent.discard(key)
                continue

            sent += 1
            logger.info(
                "Reminder sent for event #%d '%s' to user %d", event.id, event.title, event.user_id,
            )

        if sent:
            logger.info("Sent %d reminder(s)", sent)
        return sent

    async def _format_reminder(self, event: Event) -> str:
        try:
            user_settings = await self._store.get_settings(event.user_id)
            tz = resolve_zone(user_settings.timezone, self._timezone)
        except Exception:
            logger.warning("No settings for user %d, using %s", event.user_id, self._timezone)
            tz = self._zone()
        local = event.starts_at.astimezone(tz)
        return f'⏰ Reminder: "{event.title}" starts at {local:%H:%M}'
