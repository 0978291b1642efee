"""
FocusBot — Store facade.

The single persistence interface the core and the bot talk to. Every
operation is keyed by the Telegram user id and exposed as a coroutine so
callers never depend on the storage engine. Also holds the in-memory
conversational session store used by the bot's multi-step flows.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from focusbot.data.db import EventDB, PomodoroDB, SettingsDB, TaskDB, UserDB
from focusbot.data.models import (
    Event,
    PomodoroReport,
    PomodoroSession,
    PomodoroStats,
    Task,
    TaskStats,
    User,
    UserSettings,
)

if TYPE_CHECKING:
    from focusbot.core.flows import FlowSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Raised when the underlying database fails."""


def _db_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except sqlite3.Error as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class Store:
    """Async persistence interface over the SQLite table classes."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from focusbot.config import settings
            db_path = settings.DATABASE_PATH

        self._users = UserDB(db_path)
        self._tasks = TaskDB(db_path)
        self._events = EventDB(db_path)
        self._settings = SettingsDB(db_path)
        self._pomodoro = PomodoroDB(db_path)
        self._sessions: dict[int, FlowSession] = {}

    # -- users -------------------------------------------------------------

    @_db_errors
    async def ensure_user(self, user_id: int, chat_id: int | None = None) -> User:
        return self._users.create_or_find(user_id, chat_id)

    @_db_errors
    async def list_users(self) -> list[User]:
        return self._users.list_users()

    # -- tasks -------------------------------------------------------------

    @_db_errors
    async def get_tasks(self, user_id: int, include_completed: bool = True) -> list[Task]:
        return self._tasks.list_for_user(user_id, include_completed)

    @_db_errors
    async def get_task(self, user_id: int, task_id: int) -> Task | None:
        """Fetch a task only if it belongs to the user."""
        task = self._tasks.get_task(task_id)
        if task is None or task.user_id != user_id:
            return None
        return task

    @_db_errors
    async def upsert_task(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        due_at: datetime | None = None,
        task_id: int | None = None,
    ) -> Task | None:
        """Create a task, or update the user's task `task_id` if given."""
        self._users.create_or_find(user_id)
        if task_id is None:
            return self._tasks.add_task(user_id, title, description, due_at)
        existing = self._tasks.get_task(task_id)
        if existing is None or existing.user_id != user_id:
            return None
        return self._tasks.update_task(task_id, title, description, due_at)

    @_db_errors
    async def complete_task(self, user_id: int, task_id: int) -> Task | None:
        task = self._tasks.get_task(task_id)
        if task is None or task.user_id != user_id:
            return None
        return self._tasks.mark_completed(task_id)

    @_db_errors
    async def remove_task(self, user_id: int, task_id: int) -> Task | None:
        task = self._tasks.get_task(task_id)
        if task is None or task.user_id != user_id:
            return None
        self._tasks.delete_task(task_id)
        return task

    @_db_errors
    async def get_task_stats(self, user_id: int) -> TaskStats:
        total, completed = self._tasks.count(user_id)
        return TaskStats(total=total, completed=completed)

    @_db_errors
    async def cleanup_old_completed_tasks(
        self, days: int | None = None, now: datetime | None = None,
    ) -> int:
        """Delete tasks completed more than `days` ago. Returns the deleted count."""
        if days is None:
            from focusbot.config import settings
            days = settings.TASK_RETENTION_DAYS
        now = now or datetime.now(timezone.utc)
        return self._tasks.delete_completed_before(now - timedelta(days=days))

    # -- events ------------------------------------------------------------

    @_db_errors
    async def get_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        return self._events.list_for_user(user_id, start, end)

    @_db_errors
    async def upsert_event(
        self,
        user_id: int,
        title: str,
        starts_at: datetime,
        description: str | None = None,
        reminder_minutes: int | None = None,
    ) -> Event:
        self._users.create_or_find(user_id)
        return self._events.add_event(
            user_id, title, starts_at,
            description=description, reminder_minutes=reminder_minutes or None,
        )

    @_db_errors
    async def remove_event(self, user_id: int, event_id: int) -> Event | None:
        event = self._events.get_event(event_id)
        if event is None or event.user_id != user_id:
            return None
        self._events.delete_event(event_id)
        return event

    @_db_errors
    async def get_reminder_events(self, start: datetime, end: datetime) -> list[Event]:
        """Events of every user in [start, end) that carry a reminder lead."""
        return self._events.list_with_reminders(start, end)

    @_db_errors
    async def count_reminder_events(self, start: datetime, end: datetime) -> int:
        return self._events.count_with_reminders(start, end)

    # -- settings ----------------------------------------------------------

    @staticmethod
    def default_settings(user_id: int) -> UserSettings:
        from focusbot.config import settings

        return UserSettings(
            user_id=user_id,
            daily_digest=True,
            daily_digest_time=settings.DEFAULT_DIGEST_TIME,
            reminder_minutes=settings.DEFAULT_REMINDER_MINUTES,
            timezone=settings.TIMEZONE,
            pomodoro_work_minutes=settings.POMODORO_WORK_MINUTES,
            pomodoro_break_minutes=settings.POMODORO_BREAK_MINUTES,
            pomodoro_cycles=settings.POMODORO_CYCLES,
        )

    @_db_errors
    async def get_settings(self, user_id: int) -> UserSettings:
        """Return the user's settings, creating the default row on first access."""
        existing = self._settings.get_settings(user_id)
        if existing is not None:
            return existing
        self._users.create_or_find(user_id)
        return self._settings.get_or_create(self.default_settings(user_id))

    @_db_errors
    async def update_settings(self, user_id: int, **patch: object) -> UserSettings:
        self._users.create_or_find(user_id)
        self._settings.get_or_create(self.default_settings(user_id))
        self._settings.update(user_id, **patch)
        return self._settings.get_settings(user_id)

    # -- pomodoro ----------------------------------------------------------

    @_db_errors
    async def create_pomodoro_session(
        self,
        user_id: int,
        work_minutes: int,
        break_minutes: int,
        cycles: int,
        task_id: int | None = None,
        current_cycle: int = 1,
    ) -> PomodoroSession:
        self._users.create_or_find(user_id)
        return self._pomodoro.create(
            user_id, work_minutes, break_minutes, cycles,
            task_id=task_id, current_cycle=current_cycle,
        )

    @_db_errors
    async def get_pomodoro_session(self, session_id: int) -> PomodoroSession | None:
        return self._pomodoro.get(session_id)

    @_db_errors
    async def get_active_pomodoro_session(self, user_id: int) -> PomodoroSession | None:
        return self._pomodoro.get_active(user_id)

    @_db_errors
    async def update_pomodoro_session(self, session_id: int, **patch: object) -> PomodoroSession | None:
        return self._pomodoro.update(session_id, **patch)

    @_db_errors
    async def complete_pomodoro_session(self, session_id: int) -> PomodoroSession | None:
        return self._pomodoro.complete(session_id)

    @_db_errors
    async def deactivate_stale_pomodoro_sessions(self) -> int:
        return self._pomodoro.deactivate_all_active()

    @_db_errors
    async def get_pomodoro_stats(self, user_id: int, now: datetime | None = None) -> PomodoroReport:
        """Today / last 7 days / last 30 days / all-time aggregates."""
        now = now or datetime.now(timezone.utc)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        def aggregate(start: datetime | None) -> PomodoroStats:
            sessions = self._pomodoro.list_finished(
                user_id, start=start, end=now if start is not None else None,
            )
            stats = PomodoroStats(sessions=len(sessions))
            for s in sessions:
                stats.cycles += s.completed_cycles
                stats.work_minutes += s.work_minutes * s.completed_cycles
                stats.break_minutes += s.break_minutes * s.completed_cycles
            return stats

        return PomodoroReport(
            today=aggregate(today_start),
            week=aggregate(today_start - timedelta(days=7)),
            month=aggregate(today_start - timedelta(days=30)),
            total=aggregate(None),
        )

    # -- conversational sessions (memory only) ------------------------------

    def set_session(self, user_id: int, session: FlowSession) -> None:
        self._sessions[user_id] = session

    def get_session(self, user_id: int) -> FlowSession | None:
        return self._sessions.get(user_id)

    def clear_session(self, user_id: int) -> None:
        self._sessions.pop(user_id, None)
