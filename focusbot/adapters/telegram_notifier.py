"""NotificationPort over telegram.Bot.

In a private chat the Telegram chat id equals the user id, so reminders and
digests can be addressed by user id alone.
"""

from __future__ import annotations

import logging
from typing import Any

from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self,
        user_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: Any | None = None,
    ) -> None:
        await self._bot.send_message(
            chat_id=user_id, text=text, parse_mode=parse_mode, reply_markup=reply_markup,
        )
        logger.debug("Message delivered to chat %d (%d chars)", user_id, len(text))
