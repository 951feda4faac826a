#!/usr/bin/env python3
"""Delivers alert text to a Telegram chat and reports whether it arrived."""
import asyncio
import logging
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions, WebAppInfo
from telegram.error import TelegramError

from constants import DEFAULT_NOTIFY_TIMEOUT

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, bot: Bot, *, app_url: Optional[str] = None, timeout: float = DEFAULT_NOTIFY_TIMEOUT):
        self.bot = bot
        self.app_url = app_url
        self.timeout = timeout

    def _reply_markup(self) -> Optional[InlineKeyboardMarkup]:
        if not self.app_url:
            return None
        return InlineKeyboardMarkup(
            [[InlineKeyboardButton("Open app", web_app=WebAppInfo(url=self.app_url))]]
        )

    async def send(self, target: str, text: str) -> bool:
        """
        Sends ``text`` to chat ``target``.

        Returns:
            True once Telegram accepted the message. Any failure, including transport
            errors and timeouts, returns False so the caller treats it as not delivered.
        """
        try:
            await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=target,
                    text=text,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                    reply_markup=self._reply_markup(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Timed out after %.1fs sending alert to chat %s", self.timeout, target)
            return False
        except TelegramError as exc:
            logger.error("Telegram rejected alert for chat %s: %s", target, exc)
            return False
        except Exception:
            logger.exception("Unexpected error sending alert to chat %s", target)
            return False
        return True
