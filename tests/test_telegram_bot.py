"""Tests for focusbot.bot.telegram_bot — Telegram bot handlers.

Tests the command handlers, the multi-step flows and authorization. The
services run against a temp-file Store and the simulated-clock scheduler;
Telegram objects are mocked.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from focusbot.bot.telegram_bot import (
    _handle_timer_new_callback,
    cmd_addevent,
    cmd_addtask,
    cmd_digest,
    cmd_digesttime,
    cmd_done,
    cmd_help,
    cmd_start,
    cmd_stop,
    cmd_timer,
    cmd_timezone,
    format_timer_screen,
    handle_text,
    make_timer_renderer,
)
from focusbot.core.flows import FlowKind, Step
from focusbot.core.pomodoro import PomodoroRun
from focusbot.core.services import build_services
from focusbot.data.models import Task

USER = 12345
CHAT = 999


def _make_update(text="", user_id=USER):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_chat.id = CHAT
    update.message.reply_text = AsyncMock()
    return update


def _make_context(services, args=None):
    context = MagicMock()
    context.args = args or []
    context.bot_data = {"services": services}
    return context


def _last_reply(update):
    return update.message.reply_text.call_args.args[0]


@pytest.fixture
def services(store, notifier, scheduler):
    return build_services(store, notifier, scheduler)


async def _say(services, text):
    update = _make_update(text)
    await handle_text(update, _make_context(services))
    return update


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unknown_user_is_ignored(self, services):
        update = _make_update(user_id=42)
        await cmd_help(update, _make_context(services))
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_allowed_user_gets_help(self, services):
        update = _make_update()
        await cmd_help(update, _make_context(services))
        assert "/addtask" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_start_registers_user_and_digest(self, services, scheduler):
        update = _make_update()
        await cmd_start(update, _make_context(services))

        users = await services.store.list_users()
        assert [(u.telegram_user_id, u.chat_id) for u in users] == [(USER, CHAT)]
        assert len(scheduler.named(f"digest:{USER}")) == 1


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


class TestTaskCommands:
    @pytest.mark.asyncio
    async def test_quick_add_from_args(self, services):
        update = _make_update()
        await cmd_addtask(update, _make_context(services, ["Buy", "milk"]))

        tasks = await services.store.get_tasks(USER)
        assert [t.title for t in tasks] == ["Buy milk"]
        assert "added" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_task_flow(self, services):
        update = _make_update()
        await cmd_addtask(update, _make_context(services))
        assert _last_reply(update) == "What's the task?"

        reply = await _say(services, "Write report")
        assert "Due date?" in _last_reply(reply)

        reply = await _say(services, "2026-10-20 18:00")
        assert "added: Write report, due 2026-10-20 18:00" in _last_reply(reply)
        assert services.store.get_session(USER) is None

        task = (await services.store.get_tasks(USER))[0]
        assert task.due_at.hour == 15   # 18:00 Moscow in UTC

    @pytest.mark.asyncio
    async def test_done_rejects_foreign_task(self, services):
        task = await services.store.upsert_task(1, "Not yours")
        update = _make_update()
        await cmd_done(update, _make_context(services, [str(task.id)]))

        assert "No task" in _last_reply(update)
        assert (await services.store.get_task(1, task.id)).completed is False

    @pytest.mark.asyncio
    async def test_done_without_id_shows_usage(self, services):
        update = _make_update()
        await cmd_done(update, _make_context(services, ["abc"]))
        assert _last_reply(update).startswith("Usage: /done")


class TestEventFlow:
    @pytest.mark.asyncio
    async def test_bad_datetime_repeats_step(self, services):
        await cmd_addevent(_make_update(), _make_context(services))
        await _say(services, "Standup")

        reply = await _say(services, "tomorrow morning")

        assert "YYYY-MM-DD HH:MM" in _last_reply(reply)
        assert services.store.get_session(USER).step is Step.DATETIME

    @pytest.mark.asyncio
    async def test_event_with_reminder_arms_checker(self, services, scheduler):
        await cmd_addevent(_make_update(), _make_context(services))
        await _say(services, "Standup")
        await _say(services, "2026-10-19 18:00")   # later today in Moscow
        reply = await _say(services, "15")

        assert "Standup at 2026-10-19 18:00" in _last_reply(reply)
        events = await services.store.get_events(USER)
        assert events[0].reminder_minutes == 15
        assert services.reminders.running is True
        assert len(scheduler.named("reminder_checker")) == 1

    @pytest.mark.asyncio
    async def test_event_without_reminder_leaves_checker_idle(self, services):
        await cmd_addevent(_make_update(), _make_context(services))
        await _say(services, "Lunch")
        await _say(services, "2026-10-19 15:00")
        await _say(services, "0")

        assert services.reminders.running is False


class TestPomodoroCommands:
    @pytest.mark.asyncio
    async def test_timer_flow_starts_pomodoro(self, services, scheduler):
        await cmd_timer(_make_update(), _make_context(services))
        assert services.store.get_session(USER).kind is FlowKind.POMODORO

        await _say(services, "1")
        await _say(services, "1")
        reply = await _say(services, "2")

        assert "1/1 min, 2 cycles" in _last_reply(reply)
        run = services.pomodoro.get_session(USER)
        assert run.chat_id == CHAT
        assert run.cycles == 2

        await scheduler.advance(timedelta(minutes=4))
        assert services.pomodoro.get_session(USER) is None

    @pytest.mark.asyncio
    async def test_timer_shows_running_session(self, services):
        await services.pomodoro.start(USER, CHAT, work_minutes=25, break_minutes=5, cycles=4)
        update = _make_update()
        await cmd_timer(update, _make_context(services))

        assert "Pomodoro running" in _last_reply(update)
        assert services.store.get_session(USER) is None

    @pytest.mark.asyncio
    async def test_stop_without_timer(self, services):
        update = _make_update()
        await cmd_stop(update, _make_context(services))
        assert _last_reply(update) == format_timer_screen(None)

    @pytest.mark.asyncio
    async def test_new_timer_button_opens_flow(self, services):
        update = MagicMock()
        update.callback_query.answer = AsyncMock()
        update.callback_query.from_user.id = USER
        update.callback_query.message.reply_text = AsyncMock()

        await _handle_timer_new_callback(update, _make_context(services))

        assert services.store.get_session(USER).step is Step.WORK
        update.callback_query.message.reply_text.assert_called_once()

    def test_timer_screen(self):
        run = PomodoroRun(
            user_id=USER,
            chat_id=None,
            task=Task(id=1, user_id=USER, title="Thesis"),
            session_id=1,
            work_minutes=25,
            break_minutes=5,
            cycles=4,
            current_cycle=2,
            is_work_phase=False,
        )
        screen = format_timer_screen(run)
        assert 'task "Thesis"' in screen
        assert "☕ Break" in screen
        assert "Cycle: 2/4" in screen

    def test_timer_screen_shows_local_time(self):
        run = PomodoroRun(
            user_id=USER,
            chat_id=None,
            task=None,
            session_id=1,
            work_minutes=25,
            break_minutes=5,
            cycles=4,
            phase_ends_at=datetime(2026, 10, 19, 10, 25, tzinfo=timezone.utc),
        )
        screen = format_timer_screen(run, ZoneInfo("Europe/Moscow"))
        assert "Phase ends at 13:25" in screen
        assert "UTC" not in screen

    @pytest.mark.asyncio
    async def test_timer_command_uses_user_zone(self, services):
        await services.store.update_settings(USER, timezone="Asia/Tokyo")
        await services.pomodoro.start(USER, None, work_minutes=25, break_minutes=5, cycles=4)

        update = _make_update()
        await cmd_timer(update, _make_context(services))

        assert "Phase ends at 19:25" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_renderer_uses_user_zone(self, store, notifier, scheduler):
        await store.update_settings(USER, timezone="Asia/Tokyo")
        bot = MagicMock()
        bot.send_message = AsyncMock()
        services = build_services(
            store, notifier, scheduler, render=make_timer_renderer(bot, store),
        )

        await services.pomodoro.start(USER, CHAT, work_minutes=25, break_minutes=5, cycles=4)

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == CHAT
        assert "Phase ends at 19:25" in kwargs["text"]


class TestFreeText:
    @pytest.mark.asyncio
    async def test_text_without_flow(self, services):
        reply = await _say(services, "hello")
        assert "Not sure" in _last_reply(reply)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettingsCommands:
    @pytest.mark.asyncio
    async def test_digesttime_reschedules(self, services, scheduler):
        update = _make_update()
        await cmd_digesttime(update, _make_context(services, ["21:30"]))

        assert (await services.store.get_settings(USER)).daily_digest_time == "21:30"
        assert scheduler.named(f"digest:{USER}")[0].cron == "30 21 * * *"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [[], ["9am"], ["24:00"]])
    async def test_digesttime_usage(self, services, args):
        update = _make_update()
        await cmd_digesttime(update, _make_context(services, args))
        assert _last_reply(update) == "Usage: /digesttime HH:MM"

    @pytest.mark.asyncio
    async def test_digest_toggle_cancels_job(self, services, scheduler):
        await services.digest.ensure_daily_job(USER)
        update = _make_update()
        await cmd_digest(update, _make_context(services))

        assert _last_reply(update) == "Daily digest turned off."
        assert scheduler.named("digest:") == []

    @pytest.mark.asyncio
    async def test_timezone_validates_name(self, services):
        update = _make_update()
        await cmd_timezone(update, _make_context(services, ["Mars/Olympus"]))

        assert "Unknown time zone" in _last_reply(update)
        assert (await services.store.get_settings(USER)).timezone == "Europe/Moscow"

    @pytest.mark.asyncio
    async def test_timezone_moves_digest(self, services, scheduler):
        update = _make_update()
        await cmd_timezone(update, _make_context(services, ["Asia/Tokyo"]))

        assert scheduler.named("digest:")[0].timezone == "Asia/Tokyo"
