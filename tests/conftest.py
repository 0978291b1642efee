"""Shared test fixtures and configuration.

Sets up fake environment variables so focusbot.config doesn't sys.exit(),
and provides a temp-file Store plus a simulated-clock scheduler.
"""

import os

# Patch env vars BEFORE any focusbot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Europe/Moscow")

import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

START = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)  # 13:00 in Moscow


@dataclass
class ManualJob:
    id: int
    name: str | None
    callback: object
    due: datetime | None = None
    interval: timedelta | None = None
    cron: str | None = None
    timezone: str | None = None
    cancelled: bool = False


class ManualScheduler:
    """SchedulerPort with a hand-driven clock.

    One-shot and interval jobs run from advance(); cron jobs are only
    recorded, tests fire them explicitly with `await job.callback()`.
    """

    def __init__(self, start: datetime = START) -> None:
        self.current = start
        self.jobs: dict[int, ManualJob] = {}
        self._ids = itertools.count(1)

    def now(self) -> datetime:
        return self.current

    def _add(self, **kwargs) -> ManualJob:
        job = ManualJob(id=next(self._ids), **kwargs)
        self.jobs[job.id] = job
        return job

    def schedule_at(self, when, callback, name=None):
        return self._add(name=name, callback=callback, due=when)

    def schedule_interval(self, seconds, callback, first=0.0, name=None):
        return self._add(
            name=name,
            callback=callback,
            due=self.current + timedelta(seconds=first),
            interval=timedelta(seconds=seconds),
        )

    def schedule_recurring(self, cron, timezone, callback, name=None):
        return self._add(name=name, callback=callback, cron=cron, timezone=timezone)

    def cancel(self, handle) -> None:
        handle.cancelled = True
        self.jobs.pop(handle.id, None)

    def named(self, prefix: str) -> list[ManualJob]:
        return [j for j in self.jobs.values() if j.name and j.name.startswith(prefix)]

    async def advance(self, delta: timedelta = timedelta(0)) -> None:
        """Move the clock forward, running every timed job that comes due."""
        target = self.current + delta
        while True:
            due = [j for j in self.jobs.values() if j.due is not None and j.due <= target]
            if not due:
                break
            job = min(due, key=lambda j: (j.due, j.id))
            self.current = job.due
            if job.interval is not None:
                job.due = job.due + job.interval
            else:
                del self.jobs[job.id]
            await job.callback()
        self.current = target


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_focusbot.db")


@pytest.fixture
def task_db(tmp_db_path):
    from focusbot.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def event_db(tmp_db_path):
    from focusbot.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def pomodoro_db(tmp_db_path):
    from focusbot.data.db import PomodoroDB
    return PomodoroDB(db_path=tmp_db_path)


@pytest.fixture
def store(tmp_db_path):
    """Return a Store backed by a temp file."""
    from focusbot.data.store import Store
    return Store(db_path=tmp_db_path)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def notifier():
    return AsyncMock()
