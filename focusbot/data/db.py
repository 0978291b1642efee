"""
FocusBot — SQLite storage.

One class per table, all sharing a single database file. Timestamps are
stored as ISO-8601 UTC strings at second precision so range filters can be
done with plain string comparison in SQL.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from focusbot.data.models import Event, PomodoroSession, Task, User, UserSettings

logger = logging.getLogger(__name__)


def to_db(value: datetime | None) -> str | None:
    """Normalize a datetime to the stored UTC string form (naive = UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _BaseDB:
    """Connection handling shared by the table classes."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from focusbot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @staticmethod
    def _existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


class UserDB(_BaseDB):
    """Users, keyed by Telegram user id."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    telegram_user_id INTEGER PRIMARY KEY,
                    chat_id          INTEGER,
                    created_at       TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            telegram_user_id=row["telegram_user_id"],
            chat_id=row["chat_id"],
            created_at=from_db(row["created_at"]),
        )

    def create_or_find(self, telegram_user_id: int, chat_id: int | None = None) -> User:
        """Return the user, creating it on first contact and refreshing chat_id."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?", (telegram_user_id,),
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO users (telegram_user_id, chat_id, created_at) VALUES (?, ?, ?)",
                    (telegram_user_id, chat_id, to_db(_utcnow())),
                )
                logger.info("User registered: %d", telegram_user_id)
            elif chat_id is not None and row["chat_id"] != chat_id:
                conn.execute(
                    "UPDATE users SET chat_id = ? WHERE telegram_user_id = ?",
                    (chat_id, telegram_user_id),
                )
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?", (telegram_user_id,),
            ).fetchone()
        return self._row_to_user(row)

    def get_user(self, telegram_user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?", (telegram_user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(r) for r in rows]


class TaskDB(_BaseDB):
    """Personal tasks."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL,
                    title        TEXT    NOT NULL,
                    description  TEXT,
                    due_at       TEXT,
                    completed    INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    created_at   TEXT    NOT NULL
                )
            """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            due_at=from_db(row["due_at"]),
            completed=bool(row["completed"]),
            completed_at=from_db(row["completed_at"]),
            created_at=from_db(row["created_at"]),
        )

    def add_task(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        due_at: datetime | None = None,
    ) -> Task:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks (user_id, title, description, due_at, completed, created_at)
                VALUES (?, ?, ?, ?, 0, ?)
                """,
                (user_id, title, description, to_db(due_at), to_db(_utcnow())),
            )
            task_id = cursor.lastrowid
        logger.info("Task added: #%d '%s' for user %d", task_id, title, user_id)
        return self.get_task(task_id)

    def update_task(
        self,
        task_id: int,
        title: str,
        description: str | None = None,
        due_at: datetime | None = None,
    ) -> Task | None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET title = ?, description = ?, due_at = ? WHERE id = ?",
                (title, description, to_db(due_at), task_id),
            )
        return self.get_task(task_id)

    def get_task(self, task_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_for_user(self, user_id: int, include_completed: bool = True) -> list[Task]:
        """Open tasks first, then by due date (undated last), newest first."""
        query = "SELECT * FROM tasks WHERE user_id = ?"
        if not include_completed:
            query += " AND completed = 0"
        query += " ORDER BY completed, due_at IS NULL, due_at, created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_task(r) for r in rows]

    def mark_completed(self, task_id: int, completed_at: datetime | None = None) -> Task | None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET completed = 1, completed_at = ? WHERE id = ?",
                (to_db(completed_at or _utcnow()), task_id),
            )
        return self.get_task(task_id)

    def delete_task(self, task_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task #%d deleted", task_id)
        return deleted

    def delete_completed_before(self, cutoff: datetime) -> int:
        """Permanently delete tasks completed strictly before cutoff."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE completed = 1 AND completed_at < ?",
                (to_db(cutoff),),
            )
        return cursor.rowcount

    def count(self, user_id: int) -> tuple[int, int]:
        """Return (total, completed) for a user."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(completed), 0) AS done "
                "FROM tasks WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return row["total"], row["done"]


class EventDB(_BaseDB):
    """Calendar events."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          INTEGER NOT NULL,
                    title            TEXT    NOT NULL,
                    description      TEXT,
                    starts_at        TEXT    NOT NULL,
                    reminder_minutes INTEGER,
                    created_at       TEXT    NOT NULL
                )
            """)
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            starts_at=from_db(row["starts_at"]),
            reminder_minutes=row["reminder_minutes"],
            created_at=from_db(row["created_at"]),
        )

    def add_event(
        self,
        user_id: int,
        title: str,
        starts_at: datetime,
        description: str | None = None,
        reminder_minutes: int | None = None,
    ) -> Event:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (user_id, title, description, starts_at, reminder_minutes, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, title, description, to_db(starts_at),
                    reminder_minutes, to_db(_utcnow()),
                ),
            )
            event_id = cursor.lastrowid
        logger.info("Event added: #%d '%s' for user %d", event_id, title, user_id)
        return self.get_event(event_id)

    def get_event(self, event_id: int) -> Event | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def list_for_user(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        """Events ordered by start time; start inclusive, end exclusive."""
        query = "SELECT * FROM events WHERE user_id = ?"
        params: list = [user_id]
        if start is not None:
            query += " AND starts_at >= ?"
            params.append(to_db(start))
        if end is not None:
            query += " AND starts_at < ?"
            params.append(to_db(end))
        query += " ORDER BY starts_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def list_with_reminders(self, start: datetime, end: datetime) -> list[Event]:
        """All users' events in [start, end) that have a reminder lead set."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE starts_at >= ? AND starts_at < ? AND reminder_minutes IS NOT NULL
                ORDER BY starts_at
                """,
                (to_db(start), to_db(end)),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def count_with_reminders(self, start: datetime, end: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM events
                WHERE starts_at >= ? AND starts_at < ? AND reminder_minutes IS NOT NULL
                """,
                (to_db(start), to_db(end)),
            ).fetchone()
        return row[0]

    def delete_event(self, event_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Event #%d deleted", event_id)
        return deleted


class SettingsDB(_BaseDB):
    """Per-user settings; the primary key keeps it to one row per user."""

    _COLUMNS = (
        "daily_digest",
        "daily_digest_time",
        "reminder_minutes",
        "timezone",
        "pomodoro_work_minutes",
        "pomodoro_break_minutes",
        "pomodoro_cycles",
    )

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_settings (
                    user_id                INTEGER PRIMARY KEY,
                    daily_digest           INTEGER NOT NULL DEFAULT 1,
                    daily_digest_time      TEXT    NOT NULL DEFAULT '09:00',
                    reminder_minutes       INTEGER NOT NULL DEFAULT 30,
                    timezone               TEXT    NOT NULL DEFAULT 'Europe/Moscow'
                )
            """)
            # Migrate existing DBs: pomodoro defaults came later
            existing_cols = self._existing_columns(conn, "user_settings")
            if "pomodoro_work_minutes" not in existing_cols:
                conn.execute(
                    "ALTER TABLE user_settings ADD COLUMN pomodoro_work_minutes INTEGER NOT NULL DEFAULT 25"
                )
            if "pomodoro_break_minutes" not in existing_cols:
                conn.execute(
                    "ALTER TABLE user_settings ADD COLUMN pomodoro_break_minutes INTEGER NOT NULL DEFAULT 5"
                )
            if "pomodoro_cycles" not in existing_cols:
                conn.execute(
                    "ALTER TABLE user_settings ADD COLUMN pomodoro_cycles INTEGER NOT NULL DEFAULT 4"
                )
        logger.debug("Settings table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_settings(row: sqlite3.Row) -> UserSettings:
        return UserSettings(
            user_id=row["user_id"],
            daily_digest=bool(row["daily_digest"]),
            daily_digest_time=row["daily_digest_time"],
            reminder_minutes=row["reminder_minutes"],
            timezone=row["timezone"],
            pomodoro_work_minutes=row["pomodoro_work_minutes"],
            pomodoro_break_minutes=row["pomodoro_break_minutes"],
            pomodoro_cycles=row["pomodoro_cycles"],
        )

    def get_settings(self, user_id: int) -> UserSettings | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_settings WHERE user_id = ?", (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_settings(row)

    def get_or_create(self, defaults: UserSettings) -> UserSettings:
        """Fetch the user's row, inserting `defaults` if there is none yet."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO user_settings
                    (user_id, daily_digest, daily_digest_time, reminder_minutes, timezone,
                     pomodoro_work_minutes, pomodoro_break_minutes, pomodoro_cycles)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    defaults.user_id, int(defaults.daily_digest), defaults.daily_digest_time,
                    defaults.reminder_minutes, defaults.timezone,
                    defaults.pomodoro_work_minutes, defaults.pomodoro_break_minutes,
                    defaults.pomodoro_cycles,
                ),
            )
        return self.get_settings(defaults.user_id)

    def update(self, user_id: int, **fields: object) -> None:
        unknown = set(fields) - set(self._COLUMNS)
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")
        if not fields:
            return
        values = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE user_settings SET {assignments} WHERE user_id = ?",
                (*values, user_id),
            )
        logger.info("Settings updated for user %d: %s", user_id, ", ".join(fields))


class PomodoroDB(_BaseDB):
    """Persisted mirror of Pomodoro runs, used for display and stats."""

    _UPDATABLE = ("current_cycle", "active", "completed_at", "task_id")

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pomodoro_sessions (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       INTEGER NOT NULL,
                    task_id       INTEGER,
                    work_minutes  INTEGER NOT NULL,
                    break_minutes INTEGER NOT NULL,
                    cycles        INTEGER NOT NULL,
                    current_cycle INTEGER NOT NULL DEFAULT 1,
                    active        INTEGER NOT NULL DEFAULT 1,
                    started_at    TEXT    NOT NULL,
                    completed_at  TEXT
                )
            """)
        logger.debug("Pomodoro table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> PomodoroSession:
        return PomodoroSession(
            id=row["id"],
            user_id=row["user_id"],
            task_id=row["task_id"],
            work_minutes=row["work_minutes"],
            break_minutes=row["break_minutes"],
            cycles=row["cycles"],
            current_cycle=row["current_cycle"],
            active=bool(row["active"]),
            started_at=from_db(row["started_at"]),
            completed_at=from_db(row["completed_at"]),
        )

    def create(
        self,
        user_id: int,
        work_minutes: int,
        break_minutes: int,
        cycles: int,
        task_id: int | None = None,
        current_cycle: int = 1,
    ) -> PomodoroSession:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pomodoro_sessions
                    (user_id, task_id, work_minutes, break_minutes, cycles,
                     current_cycle, active, started_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    user_id, task_id, work_minutes, break_minutes, cycles,
                    current_cycle, to_db(_utcnow()),
                ),
            )
            session_id = cursor.lastrowid
        return self.get(session_id)

    def get(self, session_id: int) -> PomodoroSession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pomodoro_sessions WHERE id = ?", (session_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def get_active(self, user_id: int) -> PomodoroSession | None:
        """Most recently started active row for the user."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM pomodoro_sessions
                WHERE user_id = ? AND active = 1
                ORDER BY started_at DESC, id DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def update(self, session_id: int, **fields: object) -> PomodoroSession | None:
        unknown = set(fields) - set(self._UPDATABLE)
        if unknown:
            raise ValueError(f"Unknown pomodoro fields: {sorted(unknown)}")
        if fields:
            values = []
            for value in fields.values():
                if isinstance(value, bool):
                    value = int(value)
                elif isinstance(value, datetime):
                    value = to_db(value)
                values.append(value)
            assignments = ", ".join(f"{name} = ?" for name in fields)
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE pomodoro_sessions SET {assignments} WHERE id = ?",
                    (*values, session_id),
                )
        return self.get(session_id)

    def complete(self, session_id: int, completed_at: datetime | None = None) -> PomodoroSession | None:
        return self.update(session_id, active=False, completed_at=completed_at or _utcnow())

    def deactivate_all_active(self, completed_at: datetime | None = None) -> int:
        """Close every row still flagged active (left over from a previous process)."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE pomodoro_sessions SET active = 0, completed_at = ? WHERE active = 1",
                (to_db(completed_at or _utcnow()),),
            )
        return cursor.rowcount

    def list_finished(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PomodoroSession]:
        """Inactive sessions with a completion time in [start, end]."""
        query = (
            "SELECT * FROM pomodoro_sessions "
            "WHERE user_id = ? AND active = 0 AND completed_at IS NOT NULL"
        )
        params: list = [user_id]
        if start is not None:
            query += " AND completed_at >= ?"
            params.append(to_db(start))
        if end is not None:
            query += " AND completed_at <= ?"
            params.append(to_db(end))
        query += " ORDER BY completed_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_session(r) for r in rows]
