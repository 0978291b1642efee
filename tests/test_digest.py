"""Tests for focusbot.core.digest — digest text, per-user jobs and cleanup."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from focusbot.core.digest import DigestScheduler, build_daily_summary
from focusbot.data.db import TaskDB
from focusbot.data.models import Event, Task

USER = 12345
UTC = ZoneInfo("UTC")
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _digest(store, notifier, scheduler):
    return DigestScheduler(store, notifier, scheduler, timezone="Europe/Moscow")


def _task(id, title, due_at=None, completed=False):
    return Task(id=id, user_id=USER, title=title, due_at=due_at, completed=completed)


def _event(id, title, starts_at, description=None):
    return Event(id=id, user_id=USER, title=title, starts_at=starts_at, description=description)


# ---------------------------------------------------------------------------
# build_daily_summary
# ---------------------------------------------------------------------------


class TestBuildDailySummary:
    def test_header_uses_local_date(self):
        text = build_daily_summary([], [], NOW, UTC)
        assert text.startswith("📅 *Digest for 19 October 2026*")

    def test_nothing_due(self):
        text = build_daily_summary(
            [_task(1, "Someday"), _task(2, "Done", due_at=NOW, completed=True)], [], NOW, UTC,
        )
        assert "No tasks due and no events today" in text
        assert "Someday" not in text
        assert "Done" not in text

    def test_task_due_formats(self):
        tasks = [
            _task(1, "Overdue", due_at=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)),
            _task(2, "Today", due_at=datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)),
            _task(3, "Later", due_at=datetime(2026, 10, 21, 8, 0, tzinfo=timezone.utc)),
        ]
        lines = build_daily_summary(tasks, [], NOW, UTC).splitlines()

        assert "📋 *Tasks (3):*" in lines
        assert "• Overdue — due 18 Oct 2026 09:00 ⚠️ *OVERDUE*" in lines
        assert "• Today — due 15:30" in lines
        assert "• Later — due 21 Oct 08:00" in lines

    def test_events_sorted_and_limited_to_today(self):
        events = [
            _event(1, "Dinner", datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)),
            _event(2, "Standup", datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc), "Room 4"),
            _event(3, "Tomorrow", datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)),
        ]
        text = build_daily_summary([], events, NOW, UTC)

        assert "📆 *Events today (2):*" in text
        assert text.index("Standup") < text.index("Dinner")
        assert "• 11:00 — Standup\n  Room 4" in text
        assert "Tomorrow" not in text

    def test_times_follow_zone(self):
        events = [_event(1, "Call", datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc))]
        text = build_daily_summary([], events, NOW, ZoneInfo("Europe/Moscow"))
        assert "• 13:30 — Call" in text


# ---------------------------------------------------------------------------
# Per-user digest jobs
# ---------------------------------------------------------------------------


class TestDailyJob:
    @pytest.mark.asyncio
    async def test_defaults_register_nine_oclock_job(self, store, notifier, scheduler):
        digest = _digest(store, notifier, scheduler)

        assert await digest.ensure_daily_job(USER) is True
        jobs = scheduler.named(f"digest:{USER}")
        assert len(jobs) == 1
        assert jobs[0].cron == "0 9 * * *"
        assert jobs[0].timezone == "Europe/Moscow"

    @pytest.mark.asyncio
    async def test_reschedule_replaces_job(self, store, notifier, scheduler):
        digest = _digest(store, notifier, scheduler)
        await digest.ensure_daily_job(USER)

        await store.update_settings(USER, daily_digest_time="21:30", timezone="Asia/Tokyo")
        await digest.ensure_daily_job(USER)

        jobs = scheduler.named(f"digest:{USER}")
        assert len(jobs) == 1
        assert jobs[0].cron == "30 21 * * *"
        assert jobs[0].timezone == "Asia/Tokyo"

    @pytest.mark.asyncio
    async def test_disabling_cancels_job(self, store, notifier, scheduler):
        digest = _digest(store, notifier, scheduler)
        await digest.ensure_daily_job(USER)

        await store.update_settings(USER, daily_digest=False)
        assert await digest.ensure_daily_job(USER) is False
        assert digest.has_daily_job(USER) is False
        assert scheduler.jobs == {}

    @pytest.mark.asyncio
    async def test_bad_time_falls_back_to_nine(self, store, notifier, scheduler):
        await store.update_settings(USER, daily_digest_time="25:99")
        digest = _digest(store, notifier, scheduler)

        assert await digest.ensure_daily_job(USER) is True
        assert scheduler.named("digest:")[0].cron == "0 9 * * *"

    @pytest.mark.asyncio
    async def test_settings_error_means_no_job(self, notifier, scheduler):
        store = MagicMock()
        store.get_settings = AsyncMock(side_effect=Exception("db down"))
        digest = _digest(store, notifier, scheduler)

        assert await digest.ensure_daily_job(USER) is False
        assert scheduler.jobs == {}

    @pytest.mark.asyncio
    async def test_restore_skips_disabled_users(self, store, notifier, scheduler):
        await store.ensure_user(1)
        await store.ensure_user(2)
        await store.update_settings(2, daily_digest=False)
        digest = _digest(store, notifier, scheduler)

        assert await digest.restore_daily_jobs() == 1
        assert digest.has_daily_job(1)
        assert not digest.has_daily_job(2)


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestSendDailySummary:
    @pytest.mark.asyncio
    async def test_job_sends_markdown_digest(self, store, notifier, scheduler):
        await store.upsert_task(USER, "Report", due_at=scheduler.now() + timedelta(hours=3))
        await store.upsert_event(USER, "Gym", scheduler.now() + timedelta(hours=2))
        digest = _digest(store, notifier, scheduler)
        await digest.ensure_daily_job(USER)

        await scheduler.named("digest:")[0].callback()

        notifier.send_message.assert_called_once()
        args, kwargs = notifier.send_message.call_args
        assert args[0] == USER
        assert "• Report — due 16:00" in args[1]
        assert "• 15:00 — Gym" in args[1]
        assert kwargs["parse_mode"] == "Markdown"

    @pytest.mark.asyncio
    async def test_disabled_after_scheduling_sends_nothing(self, store, notifier, scheduler):
        digest = _digest(store, notifier, scheduler)
        await digest.ensure_daily_job(USER)
        await store.update_settings(USER, daily_digest=False)

        assert await digest.send_daily_summary(USER) is None
        notifier.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_failure_returns_none(self, store, scheduler):
        notifier = AsyncMock()
        notifier.send_message.side_effect = Exception("blocked by user")
        digest = _digest(store, notifier, scheduler)

        assert await digest.send_daily_summary(USER) is None


# ---------------------------------------------------------------------------
# Weekly cleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    @pytest.mark.asyncio
    async def test_deletes_only_old_completed_tasks(self, store, notifier, scheduler, tmp_db_path):
        tasks = TaskDB(tmp_db_path)
        old = await store.upsert_task(USER, "Old")
        recent = await store.upsert_task(USER, "Recent")
        still_open = await store.upsert_task(USER, "Open")
        tasks.mark_completed(old.id, completed_at=scheduler.now() - timedelta(days=8))
        tasks.mark_completed(recent.id, completed_at=scheduler.now() - timedelta(days=6))
        digest = _digest(store, notifier, scheduler)

        assert await digest.cleanup_old_tasks() == 1

        remaining = {t.id for t in await store.get_tasks(USER)}
        assert remaining == {recent.id, still_open.id}

    @pytest.mark.asyncio
    async def test_cleanup_job_registered_once(self, store, notifier, scheduler):
        digest = _digest(store, notifier, scheduler)
        digest.start_task_cleanup()
        digest.start_task_cleanup()

        jobs = scheduler.named("task_cleanup")
        assert len(jobs) == 1
        assert jobs[0].cron == "0 3 * * sun"

    @pytest.mark.asyncio
    async def test_cleanup_error_returns_zero(self, notifier, scheduler):
        store = MagicMock()
        store.cleanup_old_completed_tasks = AsyncMock(side_effect=Exception("db down"))
        digest = _digest(store, notifier, scheduler)

        assert await digest.cleanup_old_tasks() == 0
