"""Scheduler port — abstract interface for timers and recurring jobs.

Core modules decide *what* to run and *when*; the port decides *how*.
Production uses the Telegram JobQueue adapter, tests use a simulated clock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

JobCallback = Callable[[], Awaitable[None]]


class SchedulerPort(Protocol):
    """Abstract scheduling interface used by core modules.

    Handles returned by the schedule_* methods are opaque; pass them back to
    cancel(). Cancelling a handle whose job already ran is a no-op.
    """

    def now(self) -> datetime:
        """Current time, timezone-aware."""
        ...

    def schedule_at(
        self, when: datetime, callback: JobCallback, name: str | None = None,
    ) -> Any: ...

    def schedule_interval(
        self,
        seconds: float,
        callback: JobCallback,
        first: float = 0.0,
        name: str | None = None,
    ) -> Any: ...

    def schedule_recurring(
        self,
        cron: str,
        timezone: str,
        callback: JobCallback,
        name: str | None = None,
    ) -> Any:
        """Run callback on a five-field cron rule evaluated in an IANA zone."""
        ...

    def cancel(self, handle: Any) -> None: ...
