"""
FocusBot — Multi-step conversation flows.

A flow session is a tagged value: its kind fixes which steps and which
draft type are legal, and the constructor rejects any other combination.
apply_input() takes one user message and either advances to the next step
or hands back the finished draft.

Accepted input is deliberately strict: positive integers, HH:MM,
YYYY-MM-DD HH:MM, and "-" to skip an optional step or take the default.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from focusbot.data.models import Task, UserSettings

SKIP = "-"


class FlowInputError(ValueError):
    """The message does not fit the current step; the step is repeated."""


class FlowKind(str, Enum):
    TASK = "task"
    EVENT = "event"
    POMODORO = "pomodoro"


class Step(str, Enum):
    TITLE = "title"
    DUE = "due"
    DATETIME = "datetime"
    REMINDER = "reminder"
    WORK = "work"
    BREAK = "break"
    CYCLES = "cycles"


@dataclass(frozen=True)
class TaskDraft:
    title: str = ""
    due_at: datetime | None = None


@dataclass(frozen=True)
class EventDraft:
    title: str = ""
    starts_at: datetime | None = None
    reminder_minutes: int | None = None


@dataclass(frozen=True)
class PomodoroDraft:
    task: Task | None = None
    work_minutes: int | None = None
    break_minutes: int | None = None
    cycles: int | None = None


Draft = Union[TaskDraft, EventDraft, PomodoroDraft]

_STEPS: dict[FlowKind, tuple[Step, ...]] = {
    FlowKind.TASK: (Step.TITLE, Step.DUE),
    FlowKind.EVENT: (Step.TITLE, Step.DATETIME, Step.REMINDER),
    FlowKind.POMODORO: (Step.WORK, Step.BREAK, Step.CYCLES),
}

_DRAFTS: dict[FlowKind, type] = {
    FlowKind.TASK: TaskDraft,
    FlowKind.EVENT: EventDraft,
    FlowKind.POMODORO: PomodoroDraft,
}


@dataclass(frozen=True)
class FlowSession:
    kind: FlowKind
    step: Step
    draft: Draft

    def __post_init__(self) -> None:
        if self.step not in _STEPS[self.kind]:
            raise ValueError(f"Step {self.step.value!r} is not part of the {self.kind.value} flow")
        if not isinstance(self.draft, _DRAFTS[self.kind]):
            raise ValueError(
                f"{type(self.draft).__name__} is not a draft for the {self.kind.value} flow"
            )

    @classmethod
    def begin(cls, kind: FlowKind, draft: Draft | None = None) -> FlowSession:
        return cls(kind, _STEPS[kind][0], draft if draft is not None else _DRAFTS[kind]())

    def next_step(self) -> Step | None:
        steps = _STEPS[self.kind]
        index = steps.index(self.step)
        return steps[index + 1] if index + 1 < len(steps) else None


@dataclass(frozen=True)
class FlowResult:
    """Outcome of one message: either `session` (keep going) or `finished`."""

    session: FlowSession | None = None
    finished: Draft | None = None

    @property
    def done(self) -> bool:
        return self.finished is not None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def prompt_for(session: FlowSession, defaults: UserSettings) -> str:
    """Question to ask for the session's current step."""
    prompts = {
        (FlowKind.TASK, Step.TITLE): "What's the task?",
        (FlowKind.TASK, Step.DUE): "Due date? Send YYYY-MM-DD HH:MM, or - for none.",
        (FlowKind.EVENT, Step.TITLE): "What's the event?",
        (FlowKind.EVENT, Step.DATETIME): "When? Send YYYY-MM-DD HH:MM.",
        (FlowKind.EVENT, Step.REMINDER): (
            f"Remind how many minutes before? Send a number, 0 for no reminder, "
            f"or - for {defaults.reminder_minutes}."
        ),
        (FlowKind.POMODORO, Step.WORK): (
            f"Work minutes? (- for {defaults.pomodoro_work_minutes})"
        ),
        (FlowKind.POMODORO, Step.BREAK): (
            f"Break minutes? (- for {defaults.pomodoro_break_minutes})"
        ),
        (FlowKind.POMODORO, Step.CYCLES): (
            f"How many cycles? (- for {defaults.pomodoro_cycles})"
        ),
    }
    return prompts[(session.kind, session.step)]


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------


def parse_positive_int(text: str) -> int:
    try:
        value = int(text.strip())
    except ValueError as exc:
        raise FlowInputError("Please send a whole number.") from exc
    if value <= 0:
        raise FlowInputError("Please send a number greater than zero.")
    return value


def parse_local_datetime(text: str, tz: ZoneInfo) -> datetime:
    """'2026-10-19 14:30' in the user's zone -> aware datetime."""
    try:
        naive = datetime.strptime(text.strip(), "%Y-%m-%d %H:%M")
    except ValueError as exc:
        raise FlowInputError("Please use the format YYYY-MM-DD HH:MM.") from exc
    return naive.replace(tzinfo=tz)


def _advance(session: FlowSession, draft: Draft) -> FlowResult:
    next_step = session.next_step()
    if next_step is None:
        return FlowResult(finished=draft)
    return FlowResult(session=replace(session, step=next_step, draft=draft))


def apply_input(
    session: FlowSession,
    text: str,
    tz: ZoneInfo,
    defaults: UserSettings,
) -> FlowResult:
    """Feed one message into the flow. Raises FlowInputError on bad input."""
    text = text.strip()
    skip = text == SKIP
    draft = session.draft

    if session.step is Step.TITLE:
        if not text or skip:
            raise FlowInputError("The title can't be empty.")
        return _advance(session, replace(draft, title=text))

    if session.step is Step.DUE:
        due_at = None if skip else parse_local_datetime(text, tz)
        return _advance(session, replace(draft, due_at=due_at))

    if session.step is Step.DATETIME:
        return _advance(session, replace(draft, starts_at=parse_local_datetime(text, tz)))

    if session.step is Step.REMINDER:
        if skip:
            minutes = defaults.reminder_minutes
        elif text == "0":
            minutes = None
        else:
            minutes = parse_positive_int(text)
        return _advance(session, replace(draft, reminder_minutes=minutes))

    if session.step is Step.WORK:
        minutes = defaults.pomodoro_work_minutes if skip else parse_positive_int(text)
        return _advance(session, replace(draft, work_minutes=minutes))

    if session.step is Step.BREAK:
        minutes = defaults.pomodoro_break_minutes if skip else parse_positive_int(text)
        return _advance(session, replace(draft, break_minutes=minutes))

    if session.step is Step.CYCLES:
        cycles = defaults.pomodoro_cycles if skip else parse_positive_int(text)
        return _advance(session, replace(draft, cycles=cycles))

    raise FlowInputError(f"Unexpected step {session.step.value!r}")
