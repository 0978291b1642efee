"""
FocusBot — Data Models.

Everything a user owns is keyed by the Telegram user id. Timestamps are
timezone-aware datetimes in UTC; presentation code converts them to the
user's zone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A bot user, created on first contact."""

    telegram_user_id: int
    chat_id: int | None = None
    created_at: datetime | None = None


@dataclass
class Task:
    """A personal to-do item. Completed tasks are swept after a retention window."""

    id: int
    user_id: int
    title: str
    description: str | None = None
    due_at: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Event:
    """A calendar event. Immutable once created, except for deletion."""

    id: int
    user_id: int
    title: str
    starts_at: datetime
    description: str | None = None
    reminder_minutes: int | None = None   # None → no reminder
    created_at: datetime | None = None


@dataclass
class UserSettings:
    """Per-user singleton settings row."""

    user_id: int
    daily_digest: bool = True
    daily_digest_time: str = "09:00"      # HH:MM, user's local time
    reminder_minutes: int = 30            # default lead for new events
    timezone: str = "Europe/Moscow"
    pomodoro_work_minutes: int = 25
    pomodoro_break_minutes: int = 5
    pomodoro_cycles: int = 4


@dataclass
class PomodoroSession:
    """Persisted mirror of a Pomodoro run.

    At most one active row per user is kept by the manager (stop-before-start),
    not by a database constraint.
    """

    id: int
    user_id: int
    work_minutes: int
    break_minutes: int
    cycles: int
    current_cycle: int = 1
    task_id: int | None = None
    active: bool = True
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def completed_cycles(self) -> int:
        return max(0, min(self.current_cycle - 1, self.cycles))


@dataclass
class PomodoroStats:
    """Aggregate over finished sessions."""

    sessions: int = 0
    cycles: int = 0
    work_minutes: int = 0
    break_minutes: int = 0

    @property
    def total_hours(self) -> float:
        return round(self.work_minutes / 60, 1)

    @property
    def average_cycles(self) -> float:
        if not self.sessions:
            return 0.0
        return round(self.cycles / self.sessions, 1)


@dataclass
class TaskStats:
    total: int = 0
    completed: int = 0

    @property
    def active(self) -> int:
        return self.total - self.completed

    @property
    def completion_rate(self) -> int:
        if not self.total:
            return 0
        return round(self.completed / self.total * 100)


@dataclass
class PomodoroReport:
    """Stats for the /stats screen."""

    today: PomodoroStats = field(default_factory=PomodoroStats)
    week: PomodoroStats = field(default_factory=PomodoroStats)
    month: PomodoroStats = field(default_factory=PomodoroStats)
    total: PomodoroStats = field(default_factory=PomodoroStats)
