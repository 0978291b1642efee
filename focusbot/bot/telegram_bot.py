"""
FocusBot — Telegram Bot.

Telegram is the only user interface. Commands and the multi-step flows
(task, event, Pomodoro) land here; everything time-driven is delegated to
the services built in focusbot.core.services.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from focusbot.config import settings
from focusbot.core.clock import day_bounds, parse_hhmm, resolve_zone
from focusbot.core.flows import (
    EventDraft,
    FlowInputError,
    FlowKind,
    FlowSession,
    PomodoroDraft,
    TaskDraft,
    apply_input,
    prompt_for,
)

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from focusbot.core.pomodoro import PomodoroRun
    from focusbot.core.services import Services
    from focusbot.data.models import PomodoroStats, UserSettings
    from focusbot.data.store import Store

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "I keep your tasks, events and focus time in one place.\n\n"
    "*Tasks*: /addtask, /tasks, /done <id>, /deltask <id>\n"
    "*Events*: /addevent, /events, /delevent <id>\n"
    "*Focus*: /timer, /focus <task id>, /stop, /stats\n"
    "*Settings*: /settings, /digest, /digesttime HH:MM, /timezone <zone>, /reminder <minutes>\n"
    "/cancel aborts the current dialog."
)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def _is_allowed(user_id: int | None) -> bool:
    if user_id is None:
        return False
    return not settings.ALLOWED_USER_IDS or user_id in settings.ALLOWED_USER_IDS


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from users not on the allow-list."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or not _is_allowed(user.id):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _services(context: ContextTypes.DEFAULT_TYPE) -> Services:
    return context.bot_data["services"]


async def _user_settings(services: Services, user_id: int) -> tuple[UserSettings, ZoneInfo]:
    user_settings = await services.store.get_settings(user_id)
    return user_settings, resolve_zone(user_settings.timezone, settings.TIMEZONE)


def _parse_id_arg(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    if not context.args:
        return None
    try:
        return int(context.args[0])
    except ValueError:
        return None


def _fmt(dt: datetime, tz: ZoneInfo) -> str:
    return f"{dt.astimezone(tz):%Y-%m-%d %H:%M}"


def _timer_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("⏹ Stop timer", callback_data="timer:stop")]])


def _finished_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("🍅 New timer", callback_data="timer:new")]])


def format_timer_screen(run: PomodoroRun | None, tz: ZoneInfo | None = None) -> str:
    if run is None:
        return "No timer running. Use /timer or /focus <task id> to start one."
    mode = f'task "{run.task.title}"' if run.task else "free"
    phase = "🍅 Work" if run.is_work_phase else "☕ Break"
    lines = [
        "⌛ *Pomodoro running*",
        f"Mode: {mode}",
        f"Phase: {phase}",
        f"Cycle: {run.current_cycle}/{run.cycles}",
        f"Intervals: {run.work_minutes} min work / {run.break_minutes} min break",
    ]
    if run.phase_ends_at is not None:
        tz = tz or resolve_zone(settings.TIMEZONE, settings.TIMEZONE)
        lines.append(f"Phase ends at {run.phase_ends_at.astimezone(tz):%H:%M}")
    return "\n".join(lines)


def make_timer_renderer(bot: Bot, store: Store) -> Callable[[PomodoroRun], Coroutine[Any, Any, None]]:
    """Build the screen-refresh callback handed to the Pomodoro manager.

    Times are shown in the user's zone, or the default one if their
    settings can't be read.
    """

    async def render(run: PomodoroRun) -> None:
        try:
            user_settings = await store.get_settings(run.user_id)
            tz = resolve_zone(user_settings.timezone, settings.TIMEZONE)
        except Exception as exc:
            logger.error("Timer screen settings error for user %d: %s", run.user_id, exc)
            tz = resolve_zone(settings.TIMEZONE, settings.TIMEZONE)
        await bot.send_message(
            chat_id=run.target_chat,
            text=format_timer_screen(run, tz),
            parse_mode="Markdown",
            reply_markup=_timer_keyboard(),
        )

    return render


def _format_stats(label: str, stats: PomodoroStats) -> str:
    return (
        f"*{label}:* {stats.sessions} session(s), {stats.cycles} cycle(s), "
        f"{stats.work_minutes} min focused"
    )


# ---------------------------------------------------------------------------
# Basic commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the user and schedule their digest."""
    services = _services(context)
    user_id = update.effective_user.id
    chat_id = update.effective_chat.id if update.effective_chat else None

    try:
        await services.store.ensure_user(user_id, chat_id)
    except Exception as exc:
        logger.error("/start error: %s", exc)
        await update.message.reply_text("Something went wrong, please try again.")
        return

    await services.digest.ensure_daily_job(user_id)
    await update.message.reply_text(f"Hi! {HELP_TEXT}", parse_mode="Markdown")


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")


@authorized_only
async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel — drop the current dialog."""
    _services(context).store.clear_session(update.effective_user.id)
    await update.message.reply_text("Dialog cancelled.")


async def _begin_flow(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    kind: FlowKind,
    draft: TaskDraft | EventDraft | PomodoroDraft | None = None,
) -> None:
    services = _services(context)
    user_id = update.effective_user.id
    session = FlowSession.begin(kind, draft)
    services.store.set_session(user_id, session)
    user_settings, _ = await _user_settings(services, user_id)
    await update.message.reply_text(prompt_for(session, user_settings))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_addtask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addtask [title] — quick-add with a title, otherwise start the flow."""
    if context.args:
        services = _services(context)
        task = await services.store.upsert_task(update.effective_user.id, " ".join(context.args))
        await update.message.reply_text(f"✅ Task `{task.id}` added: {task.title}", parse_mode="Markdown")
        return
    await _begin_flow(update, context, FlowKind.TASK)


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks — list open tasks and task stats."""
    services = _services(context)
    user_id = update.effective_user.id
    try:
        tasks = await services.store.get_tasks(user_id, include_completed=False)
        stats = await services.store.get_task_stats(user_id)
        _, tz = await _user_settings(services, user_id)
    except Exception as exc:
        logger.error("/tasks error: %s", exc)
        await update.message.reply_text("Couldn't load tasks. Please try again.")
        return

    if not tasks:
        await update.message.reply_text("No open tasks. Add one with /addtask.")
        return

    lines = ["*Open tasks:*\n"]
    for t in tasks:
        due = f" (due {_fmt(t.due_at, tz)})" if t.due_at else ""
        lines.append(f"`{t.id}` — {t.title}{due}")
    lines.append(
        f"\nDone {stats.completed}/{stats.total} ({stats.completion_rate}%)"
    )
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — mark a task as completed."""
    task_id = _parse_id_arg(context)
    if task_id is None:
        await update.message.reply_text("Usage: /done <task_id>\nUse /tasks to see IDs.")
        return

    task = await _services(context).store.complete_task(update.effective_user.id, task_id)
    if task is None:
        await update.message.reply_text(f"No task {task_id}. Use /tasks to see valid IDs.")
        return
    await update.message.reply_text(f"✅ Marked '*{task.title}*' as done.", parse_mode="Markdown")


@authorized_only
async def cmd_deltask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deltask <id> — delete a task permanently."""
    task_id = _parse_id_arg(context)
    if task_id is None:
        await update.message.reply_text("Usage: /deltask <task_id>")
        return

    task = await _services(context).store.remove_task(update.effective_user.id, task_id)
    if task is None:
        await update.message.reply_text(f"No task {task_id}.")
        return
    await update.message.reply_text(f"🗑 Task '{task.title}' deleted.")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_addevent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _begin_flow(update, context, FlowKind.EVENT)


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events — list events from today on."""
    services = _services(context)
    user_id = update.effective_user.id
    try:
        _, tz = await _user_settings(services, user_id)
        today_start, _ = day_bounds(datetime.now(timezone.utc), tz)
        events = await services.store.get_events(user_id, start=today_start)
    except Exception as exc:
        logger.error("/events error: %s", exc)
        await update.message.reply_text("Couldn't load events. Please try again.")
        return

    if not events:
        await update.message.reply_text("No upcoming events. Add one with /addevent.")
        return

    lines = ["*Upcoming events:*\n"]
    for e in events:
        reminder = f" ⏰ {e.reminder_minutes} min" if e.reminder_minutes else ""
        lines.append(f"`{e.id}` — {_fmt(e.starts_at, tz)} {e.title}{reminder}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_delevent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    event_id = _parse_id_arg(context)
    if event_id is None:
        await update.message.reply_text("Usage: /delevent <event_id>")
        return

    event = await _services(context).store.remove_event(update.effective_user.id, event_id)
    if event is None:
        await update.message.reply_text(f"No event {event_id}.")
        return
    await update.message.reply_text(f"🗑 Event '{event.title}' deleted.")


# ---------------------------------------------------------------------------
# Pomodoro
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_timer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /timer — show the running timer, or start a free Pomodoro flow."""
    services = _services(context)
    run = services.pomodoro.get_session(update.effective_user.id)
    if run is not None:
        _, tz = await _user_settings(services, update.effective_user.id)
        await update.message.reply_text(
            format_timer_screen(run, tz), parse_mode="Markdown", reply_markup=_timer_keyboard(),
        )
        return
    await _begin_flow(update, context, FlowKind.POMODORO)


@authorized_only
async def cmd_focus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /focus <task id> — start a Pomodoro flow linked to a task."""
    task_id = _parse_id_arg(context)
    if task_id is None:
        await update.message.reply_text("Usage: /focus <task_id>\nUse /tasks to see IDs.")
        return

    task = await _services(context).store.get_task(update.effective_user.id, task_id)
    if task is None or task.completed:
        await update.message.reply_text(f"No open task {task_id}.")
        return
    await _begin_flow(update, context, FlowKind.POMODORO, PomodoroDraft(task=task))


@authorized_only
async def cmd_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    stopped = await _services(context).pomodoro.stop(update.effective_user.id)
    if not stopped:
        await update.message.reply_text(format_timer_screen(None))


async def _handle_timer_stop_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the inline "Stop timer" button."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or not _is_allowed(user.id):
        return

    stopped = await _services(context).pomodoro.stop(user.id)
    if not stopped:
        await query.edit_message_text(format_timer_screen(None))


async def _handle_timer_new_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the "New timer" button under the finished message."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or not _is_allowed(user.id):
        return

    services = _services(context)
    session = FlowSession.begin(FlowKind.POMODORO)
    services.store.set_session(user.id, session)
    user_settings, _ = await _user_settings(services, user.id)
    await query.message.reply_text(prompt_for(session, user_settings))


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — Pomodoro statistics."""
    try:
        report = await _services(context).store.get_pomodoro_stats(update.effective_user.id)
    except Exception as exc:
        logger.error("/stats error: %s", exc)
        await update.message.reply_text("Couldn't load statistics. Please try again.")
        return

    lines = [
        "📊 *Pomodoro statistics*\n",
        _format_stats("Today", report.today),
        _format_stats("Last 7 days", report.week),
        _format_stats("Last 30 days", report.month),
        _format_stats("All time", report.total),
        f"\nTotal focus: {report.total.total_hours} h, "
        f"{report.total.average_cycles} cycles per session on average",
    ]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_settings, _ = await _user_settings(_services(context), update.effective_user.id)
    digest = f"on at {user_settings.daily_digest_time}" if user_settings.daily_digest else "off"
    lines = [
        "⚙️ *Settings*\n",
        f"Daily digest: {digest}",
        f"Time zone: {user_settings.timezone}",
        f"Default reminder: {user_settings.reminder_minutes} min before",
        f"Pomodoro: {user_settings.pomodoro_work_minutes}/"
        f"{user_settings.pomodoro_break_minutes} min x {user_settings.pomodoro_cycles}",
    ]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_digest(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /digest — toggle the daily digest."""
    services = _services(context)
    user_id = update.effective_user.id
    current = await services.store.get_settings(user_id)
    updated = await services.store.update_settings(user_id, daily_digest=not current.daily_digest)
    await services.digest.ensure_daily_job(user_id)
    state = "on" if updated.daily_digest else "off"
    await update.message.reply_text(f"Daily digest turned {state}.")


@authorized_only
async def cmd_digesttime(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /digesttime HH:MM."""
    try:
        hour, minute = parse_hhmm(context.args[0])
    except (IndexError, TypeError, ValueError):
        await update.message.reply_text("Usage: /digesttime HH:MM")
        return

    services = _services(context)
    user_id = update.effective_user.id
    await services.store.update_settings(user_id, daily_digest_time=f"{hour:02d}:{minute:02d}")
    await services.digest.ensure_daily_job(user_id)
    await update.message.reply_text(f"Digest time set to {hour:02d}:{minute:02d}.")


@authorized_only
async def cmd_timezone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /timezone <IANA name>, e.g. /timezone Europe/Berlin."""
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    if not context.args:
        await update.message.reply_text("Usage: /timezone Europe/Moscow")
        return
    name = context.args[0]
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        await update.message.reply_text(f"Unknown time zone: {name}")
        return

    services = _services(context)
    user_id = update.effective_user.id
    await services.store.update_settings(user_id, timezone=name)
    await services.digest.ensure_daily_job(user_id)
    await update.message.reply_text(f"Time zone updated: {name}")


@authorized_only
async def cmd_reminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminder <minutes> — default lead for new events."""
    minutes = _parse_id_arg(context)
    if minutes is None or minutes <= 0:
        await update.message.reply_text("Usage: /reminder <minutes>")
        return
    await _services(context).store.update_settings(update.effective_user.id, reminder_minutes=minutes)
    await update.message.reply_text(f"New events will remind you {minutes} minutes before.")


# ---------------------------------------------------------------------------
# Flow input
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Feed free text into the user's active flow, if any."""
    services = _services(context)
    user_id = update.effective_user.id
    session = services.store.get_session(user_id)
    if session is None:
        await update.message.reply_text("Not sure what to do with that. See /help.")
        return

    user_settings, tz = await _user_settings(services, user_id)
    try:
        result = apply_input(session, update.message.text, tz, user_settings)
    except FlowInputError as exc:
        await update.message.reply_text(f"{exc}\n{prompt_for(session, user_settings)}")
        return

    if not result.done:
        services.store.set_session(user_id, result.session)
        await update.message.reply_text(prompt_for(result.session, user_settings))
        return

    services.store.clear_session(user_id)
    await _finish_flow(update, services, result.finished, tz)


async def _finish_flow(
    update: Update,
    services: Services,
    draft: TaskDraft | EventDraft | PomodoroDraft,
    tz: ZoneInfo,
) -> None:
    user_id = update.effective_user.id

    if isinstance(draft, TaskDraft):
        task = await services.store.upsert_task(user_id, draft.title, due_at=draft.due_at)
        due = f", due {_fmt(task.due_at, tz)}" if task.due_at else ""
        await update.message.reply_text(f"✅ Task `{task.id}` added: {task.title}{due}", parse_mode="Markdown")
        return

    if isinstance(draft, EventDraft):
        event = await services.store.upsert_event(
            user_id, draft.title, draft.starts_at, reminder_minutes=draft.reminder_minutes,
        )
        if event.reminder_minutes:
            await services.reminders.ensure_started()
        await update.message.reply_text(
            f"📆 Event `{event.id}` added: {event.title} at {_fmt(event.starts_at, tz)}",
            parse_mode="Markdown",
        )
        return

    chat_id = update.effective_chat.id if update.effective_chat else None
    target = f'"{draft.task.title}"' if draft.task else "a free session"
    await update.message.reply_text(
        f"Starting Pomodoro for {target}: {draft.work_minutes}/{draft.break_minutes} min, "
        f"{draft.cycles} cycles."
    )
    await services.pomodoro.start(
        user_id,
        chat_id,
        draft.task,
        work_minutes=draft.work_minutes,
        break_minutes=draft.break_minutes,
        cycles=draft.cycles,
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    from focusbot.core.services import start_background_jobs

    await start_background_jobs(app.bot_data["services"])


def build_app() -> Application:
    """Build and configure the Telegram Application with all handlers."""
    from focusbot.adapters.job_queue_scheduler import JobQueueScheduler
    from focusbot.adapters.telegram_notifier import TelegramNotifier
    from focusbot.core.services import build_services
    from focusbot.data.store import Store

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).post_init(_post_init).build()

    store = Store()
    app.bot_data["services"] = build_services(
        store,
        TelegramNotifier(app.bot),
        JobQueueScheduler(app.job_queue),
        render=make_timer_renderer(app.bot, store),
        finished_markup=_finished_keyboard(),
    )

    commands = {
        "start": cmd_start,
        "help": cmd_help,
        "cancel": cmd_cancel,
        "addtask": cmd_addtask,
        "tasks": cmd_tasks,
        "done": cmd_done,
        "deltask": cmd_deltask,
        "addevent": cmd_addevent,
        "events": cmd_events,
        "delevent": cmd_delevent,
        "timer": cmd_timer,
        "focus": cmd_focus,
        "stop": cmd_stop,
        "stats": cmd_stats,
        "settings": cmd_settings,
        "digest": cmd_digest,
        "digesttime": cmd_digesttime,
        "timezone": cmd_timezone,
        "reminder": cmd_reminder,
    }
    for name, handler in commands.items():
        app.add_handler(CommandHandler(name, handler))

    app.add_handler(CallbackQueryHandler(_handle_timer_stop_callback, pattern=r"^timer:stop$"))
    app.add_handler(CallbackQueryHandler(_handle_timer_new_callback, pattern=r"^timer:new$"))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting FocusBot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
