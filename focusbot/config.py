"""
FocusBot — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads its defaults from here.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from focusbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/focusbot.db"

    # Security: an empty list means the bot is open to everyone
    ALLOWED_USER_IDS: list[int] = []

    # Fallback zone for users without one and for server-side jobs
    TIMEZONE: str = "Europe/Moscow"

    # Per-user defaults (applied lazily when a user has no settings row)
    DEFAULT_DIGEST_TIME: str = "09:00"
    DEFAULT_REMINDER_MINUTES: int = 30
    POMODORO_WORK_MINUTES: int = 25
    POMODORO_BREAK_MINUTES: int = 5
    POMODORO_CYCLES: int = 4

    # Reminder checker
    REMINDER_CHECK_INTERVAL_SECONDS: int = 60
    REMINDER_DEDUP_HOURS: int = 24

    # Weekly cleanup of completed tasks
    CLEANUP_CRON: str = "0 3 * * sun"
    TASK_RETENTION_DAYS: int = 7

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "DEFAULT_REMINDER_MINUTES",
        "POMODORO_WORK_MINUTES",
        "POMODORO_BREAK_MINUTES",
        "POMODORO_CYCLES",
        "REMINDER_CHECK_INTERVAL_SECONDS",
        "REMINDER_DEDUP_HOURS",
        "TASK_RETENTION_DAYS",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("DEFAULT_DIGEST_TIME")
    @classmethod
    def check_hhmm(cls, v: str) -> str:
        if not _HHMM_RE.match(v.strip()):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v.strip()

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone {v!r}") from exc
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/focusbot.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Moscow"),
        DEFAULT_DIGEST_TIME=os.getenv("DEFAULT_DIGEST_TIME", "09:00"),
        DEFAULT_REMINDER_MINUTES=os.getenv("DEFAULT_REMINDER_MINUTES", "30"),
        POMODORO_WORK_MINUTES=os.getenv("POMODORO_WORK_MINUTES", "25"),
        POMODORO_BREAK_MINUTES=os.getenv("POMODORO_BREAK_MINUTES", "5"),
        POMODORO_CYCLES=os.getenv("POMODORO_CYCLES", "4"),
        REMINDER_CHECK_INTERVAL_SECONDS=os.getenv("REMINDER_CHECK_INTERVAL_SECONDS", "60"),
        REMINDER_DEDUP_HOURS=os.getenv("REMINDER_DEDUP_HOURS", "24"),
        CLEANUP_CRON=os.getenv("CLEANUP_CRON", "0 3 * * sun"),
        TASK_RETENTION_DAYS=os.getenv("TASK_RETENTION_DAYS", "7"),
    )


# Singleton, imported by all other modules as:
#   from focusbot.config import settings
settings = _load_settings()
