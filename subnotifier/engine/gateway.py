"""Outbound delivery channel used by the notification engine."""

import asyncio
import logging
from typing import Protocol

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class DeliveryGateway(Protocol):
    """What the engine needs from a messaging channel."""

    def is_ready(self) -> bool:
        ...

    async def send(self, channel_id: str, text: str) -> bool:
        ...


class TelegramGateway:
    """Delivery gateway backed by a python-telegram-bot ``Bot``.

    The gateway is constructed before the bot finishes its startup handshake;
    ``mark_ready`` is called from the application's ``post_init`` hook and
    ``mark_not_ready`` once shutdown begins.
    """

    def __init__(self, bot: Bot, timeout: float = 10.0):
        self.bot = bot
        self.timeout = timeout
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def mark_ready(self) -> None:
        self._ready = True
        logger.info("Delivery gateway ready")

    def mark_not_ready(self) -> None:
        self._ready = False
        logger.info("Delivery gateway stopped")

    async def send(self, channel_id: str, text: str) -> bool:
        """Send an HTML message to a chat.

        Returns:
            True if Telegram accepted the message
        """
        if not self.is_ready():
            logger.warning(f"Gateway not ready, cannot send to chat {channel_id}")
            return False

        try:
            await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=channel_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                ),
                timeout=self.timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timed out after {self.timeout}s sending to chat {channel_id}")
            return False
        except TelegramError as e:
            logger.error(f"Failed to send message to chat {channel_id}: {e}")
            return False


async def deliver(gateway: DeliveryGateway, channel_id: str | None, text: str) -> bool:
    """Send through a gateway, turning every failure mode into ``False``."""
    if not channel_id:
        return False

    if not gateway.is_ready():
        logger.warning(f"Delivery gateway not ready, skipping chat {channel_id}")
        return False

    try:
        return bool(await gateway.send(channel_id, text))
    except Exception as e:
        logger.error(f"Delivery to chat {channel_id} raised: {e}")
        return False
