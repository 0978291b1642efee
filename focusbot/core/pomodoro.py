"""
FocusBot — Pomodoro sessions.

One live work/break cycle sequence per user, driven by one-shot timers from
the scheduler port:

    work(1) -> break(1) -> work(2) -> ... -> break(cycles) -> completed

The in-memory run is the source of truth for timing. The persisted row is a
best-effort mirror for display and stats: if the database fails, the
countdown keeps going and the failure is only logged.

Runs are not restored after a restart. reconcile_on_startup() closes rows
left active by a previous process instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from focusbot.data.models import Task
    from focusbot.data.store import Store
    from focusbot.ports.notification_port import NotificationPort
    from focusbot.ports.scheduler_port import SchedulerPort

logger = logging.getLogger(__name__)

DEFAULT_WORK_MINUTES = 25
DEFAULT_BREAK_MINUTES = 5
DEFAULT_CYCLES = 4


class Phase(str, Enum):
    WORK = "work"
    BREAK = "break"


@dataclass
class PomodoroRun:
    """Live state of a user's running Pomodoro."""

    user_id: int
    chat_id: int | None
    task: Task | None
    session_id: int | None          # persisted row, None if the insert failed
    work_minutes: int
    break_minutes: int
    cycles: int
    current_cycle: int = 1
    is_work_phase: bool = True
    phase_ends_at: datetime | None = None
    timers: list[Any] = field(default_factory=list)

    @property
    def phase(self) -> Phase:
        return Phase.WORK if self.is_work_phase else Phase.BREAK

    @property
    def target_chat(self) -> int:
        return self.chat_id if self.chat_id is not None else self.user_id


RenderCallback = Callable[[PomodoroRun], Awaitable[None]]


class PomodoroManager:
    """Owns the registry of running Pomodoros (user id -> run)."""

    def __init__(
        self,
        store: Store,
        notifier: NotificationPort,
        scheduler: SchedulerPort,
        render: RenderCallback | None = None,
        finished_markup: Any | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._scheduler = scheduler
        self._render = render
        self._finished_markup = finished_markup
        self._sessions: dict[int, PomodoroRun] = {}

    def get_session(self, user_id: int) -> PomodoroRun | None:
        return self._sessions.get(user_id)

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        user_id: int,
        chat_id: int | None = None,
        task: Task | None = None,
        *,
        work_minutes: int | None = None,
        break_minutes: int | None = None,
        cycles: int | None = None,
    ) -> PomodoroRun:
        """Replace any running Pomodoro for the user and enter the first work phase.

        Falsy durations fall back to 25/5/4. Values are otherwise not
        validated; callers pass positive integers.
        """
        await self.stop(user_id, notify=False)

        work_minutes = work_minutes or DEFAULT_WORK_MINUTES
        break_minutes = break_minutes or DEFAULT_BREAK_MINUTES
        cycles = cycles or DEFAULT_CYCLES

        session_id = None
        try:
            row = await self._store.create_pomodoro_session(
                user_id, work_minutes, break_minutes, cycles,
                task_id=task.id if task else None,
            )
            session_id = row.id
        except Exception:
            logger.exception("Failed to persist pomodoro session for user %d", user_id)

        # a concurrent start() may have registered a run during the insert
        await self.stop(user_id, notify=False)

        run = PomodoroRun(
            user_id=user_id,
            chat_id=chat_id,
            task=task,
            session_id=session_id,
            work_minutes=work_minutes,
            break_minutes=break_minutes,
            cycles=cycles,
        )
        self._sessions[user_id] = run
        logger.info(
            "Pomodoro started for user %d: %d/%d min x %d",
            user_id, work_minutes, break_minutes, cycles,
        )
        await self._enter_phase(run, Phase.WORK)
        return run

    async def stop(self, user_id: int, notify: bool = True) -> bool:
        """Cancel the user's Pomodoro. Returns False if none was running."""
        run = self._sessions.pop(user_id, None)
        if run is None:
            return False

        self._cancel_timers(run)
        await self._close_row(run)
        logger.info("Pomodoro stopped for user %d at cycle %d", user_id, run.current_cycle)

        if notify:
            await self._notify(run, "⏹️ Pomodoro stopped.")
        return True

    async def reconcile_on_startup(self) -> int:
        """Close rows left active by a previous process. Returns how many."""
        try:
            count = await self._store.deactivate_stale_pomodoro_sessions()
        except Exception:
            logger.exception("Failed to reconcile stale pomodoro sessions")
            return 0
        if count:
            logger.warning("Closed %d pomodoro session(s) abandoned by a restart", count)
        return count

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def _is_current(self, run: PomodoroRun) -> bool:
        return self._sessions.get(run.user_id) is run

    async def _enter_phase(self, run: PomodoroRun, phase: Phase) -> None:
        run.is_work_phase = phase is Phase.WORK
        minutes = run.work_minutes if run.is_work_phase else run.break_minutes
        run.phase_ends_at = self._scheduler.now() + timedelta(minutes=minutes)

        on_elapsed = self._on_work_elapsed if run.is_work_phase else self._on_break_elapsed
        handle = self._scheduler.schedule_at(
            run.phase_ends_at,
            partial(on_elapsed, run),
            name=f"pomodoro:{run.user_id}:{phase.value}:{run.current_cycle}",
        )
        run.timers.append(handle)
        await self._refresh_screen(run)

    async def _on_work_elapsed(self, run: PomodoroRun) -> None:
        if not self._is_current(run):
            return
        run.timers.clear()
        await self._enter_phase(run, Phase.BREAK)

    async def _on_break_elapsed(self, run: PomodoroRun) -> None:
        if not self._is_current(run):
            return
        run.timers.clear()

        finished_cycle = run.current_cycle
        run.current_cycle += 1
        if run.session_id is not None:
            try:
                await self._store.update_pomodoro_session(
                    run.session_id, current_cycle=run.current_cycle,
                )
            except Exception:
                logger.exception("Error updating pomodoro session %d", run.session_id)

        # stop() may have run while the update was in flight
        if not self._is_current(run):
            return

        if run.current_cycle > run.cycles:
            await self._complete(run)
            return

        await self._notify(
            run,
            f"✅ *Cycle {finished_cycle} finished!*\n\n"
            f"Starting cycle {run.current_cycle}/{run.cycles}.",
        )
        # and again while the message was being sent
        if not self._is_current(run):
            return
        await self._enter_phase(run, Phase.WORK)

    async def _complete(self, run: PomodoroRun) -> None:
        del self._sessions[run.user_id]
        self._cancel_timers(run)
        await self._close_row(run)
        logger.info("Pomodoro completed for user %d (%d cycles)", run.user_id, run.cycles)
        await self._notify(
            run,
            "✅ *Pomodoro finished!*\n\nGreat work, all cycles are done.",
            reply_markup=self._finished_markup,
        )

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    def _cancel_timers(self, run: PomodoroRun) -> None:
        for handle in run.timers:
            self._scheduler.cancel(handle)
        run.timers.clear()

    async def _close_row(self, run: PomodoroRun) -> None:
        if run.session_id is None:
            return
        try:
            await self._store.complete_pomodoro_session(run.session_id)
        except Exception:
            logger.exception("Error completing pomodoro session %d", run.session_id)

    async def _refresh_screen(self, run: PomodoroRun) -> None:
        if self._render is None:
            return
        try:
            await self._render(run)
        except Exception:
            logger.exception("Error updating timer screen for user %d", run.user_id)

    async def _notify(self, run: PomodoroRun, text: str, reply_markup: Any | None = None) -> None:
        try:
            await self._notifier.send_message(
                run.target_chat, text, parse_mode="Markdown", reply_markup=reply_markup,
            )
        except Exception:
            logger.exception("Failed to send pomodoro message to user %d", run.user_id)
