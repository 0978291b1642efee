"""Outbound messaging port.

The schedulers push reminders, digests and Pomodoro messages through this
protocol; the Telegram adapter is the only production implementation.
"""

from __future__ import annotations

from typing import Any, Protocol


class NotificationPort(Protocol):
    """Delivers one message to a user or chat. Raises on delivery failure."""

    async def send_message(
        self,
        user_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: Any | None = None,
    ) -> None: ...
