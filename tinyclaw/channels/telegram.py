"""Telegram channel implementation using python-telegram-bot (long polling)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger
from telegram import ReplyParameters, Update
from telegram.constants import ChatAction
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from tinyclaw.bus.queue import FileQueue, ResetFlag
from tinyclaw.channels.base import BaseChannel
from tinyclaw.config.schema import TelegramConfig


TELEGRAM_MAX_MESSAGE_LENGTH = 4096


@dataclass(slots=True)
class TelegramTarget:
    chat_id: int
    message_id: Optional[int] = None


class TelegramChannel(BaseChannel):
    """
    Telegram bot channel.

    Only private text chats are queued.
    """

    name = "telegram"
    max_message_length = TELEGRAM_MAX_MESSAGE_LENGTH
    presence_interval = 4.0

    def __init__(self, config: TelegramConfig, queue: FileQueue, reset_flag: ResetFlag, **kwargs: Any):
        super().__init__(config, queue, reset_flag, **kwargs)
        self.config: TelegramConfig = config
        self._app: Optional[Application] = None

    # ==========================================================
    # Lifecycle
    # ==========================================================

    async def start(self) -> None:
        if not self.config.token:
            logger.error("Telegram token not configured")
            return

        builder = Application.builder().token(self.config.token)
        if self.config.proxy:
            builder = builder.proxy(self.config.proxy).get_updates_proxy(self.config.proxy)
        self._app = builder.build()

        self._app.add_handler(
            MessageHandler(filters.TEXT & filters.ChatType.PRIVATE, self._on_message)
        )
        self._app.add_error_handler(self._on_error)

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()

        me = await self._app.bot.get_me()
        logger.success("Telegram bot connected as @{}", me.username)

    async def stop(self) -> None:
        if not self._app:
            return

        try:
            if self._app.updater and self._app.updater.running:
                await self._app.updater.stop()
            if self._app.running:
                await self._app.stop()
            await self._app.shutdown()
        except Exception as e:
            logger.error("Telegram shutdown failed: {}", e)
        finally:
            self._app = None

    # ==========================================================
    # Inbound handling
    # ==========================================================

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        msg = update.effective_message
        if msg is None or not msg.text:
            return

        user = update.effective_user
        if user:
            sender = user.full_name or user.username or str(user.id)
            sender_id = str(user.id)
        else:
            sender = "Unknown"
            sender_id = str(msg.chat_id)

        try:
            await self.handle_message(
                sender=sender,
                sender_id=sender_id,
                content=msg.text,
                target=TelegramTarget(chat_id=msg.chat_id, message_id=msg.message_id),
            )
        except Exception as e:
            logger.error("Message handling error: {}", e)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Polling error: {}", context.error)

    # ==========================================================
    # Outbound
    # ==========================================================

    async def send_text(self, target: TelegramTarget, text: str, *, reply: bool) -> None:
        if not self._app:
            raise ConnectionError("Telegram bot not running")

        await self._app.bot.send_message(
            chat_id=target.chat_id,
            text=text,
            reply_parameters=(
                ReplyParameters(message_id=target.message_id)
                if reply and target.message_id
                else None
            ),
        )

    async def show_presence(self, target: TelegramTarget) -> None:
        if self._app:
            await self._app.bot.send_chat_action(chat_id=target.chat_id, action=ChatAction.TYPING)
