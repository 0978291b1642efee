"""Tests for focusbot.config — Settings validation."""

import pytest
from pydantic import ValidationError

from focusbot.config import Settings, settings


def test_loaded_from_test_env():
    assert settings.TELEGRAM_BOT_TOKEN == "fake-token-for-tests"
    assert settings.ALLOWED_USER_IDS == [12345]
    assert settings.TIMEZONE == "Europe/Moscow"


def test_defaults():
    s = Settings(TELEGRAM_BOT_TOKEN="t")
    assert s.ALLOWED_USER_IDS == []
    assert s.REMINDER_CHECK_INTERVAL_SECONDS == 60
    assert s.REMINDER_DEDUP_HOURS == 24
    assert s.TASK_RETENTION_DAYS == 7
    assert s.CLEANUP_CRON == "0 3 * * sun"


def test_user_ids_parsed_from_csv():
    s = Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS=" 1, 2 ,,3 ")
    assert s.ALLOWED_USER_IDS == [1, 2, 3]


def test_blank_user_ids_mean_everyone():
    assert Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="  ").ALLOWED_USER_IDS == []


def test_numbers_parsed_from_strings():
    s = Settings(TELEGRAM_BOT_TOKEN="t", POMODORO_CYCLES="6", REMINDER_CHECK_INTERVAL_SECONDS="30")
    assert s.POMODORO_CYCLES == 6
    assert s.REMINDER_CHECK_INTERVAL_SECONDS == 30


@pytest.mark.parametrize("value", ["9am", "24:00", "12:60", ""])
def test_bad_digest_time_rejected(value):
    with pytest.raises(ValidationError):
        Settings(TELEGRAM_BOT_TOKEN="t", DEFAULT_DIGEST_TIME=value)


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError):
        Settings(TELEGRAM_BOT_TOKEN="t", TIMEZONE="Mars/Olympus")
