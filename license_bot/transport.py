from __future__ import annotations

import logging
from typing import Protocol

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup


class ChatTransport(Protocol):
    async def send_message(self, chat_id: int, text: str, keyboard: InlineKeyboardMarkup | None = None) -> int | None: ...

    async def send_photo(
        self, chat_id: int, photo: bytes, caption: str, keyboard: InlineKeyboardMarkup | None = None
    ) -> int | None: ...

    async def edit_message(
        self, chat_id: int, message_id: int, text: str, keyboard: InlineKeyboardMarkup | None = None
    ) -> int | None: ...

    async def delete_message(self, chat_id: int, message_id: int) -> bool: ...

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None: ...


class TelegramTransport:
    """aiogram-backed transport. Every call is best-effort: failures are logged, never raised."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str, keyboard: InlineKeyboardMarkup | None = None) -> int | None:
        try:
            sent = await self._bot.send_message(chat_id, text, reply_markup=keyboard)
        except TelegramAPIError:
            logging.exception("[Transport] send_message failed chat=%s", chat_id)
            return None
        return sent.message_id

    async def send_photo(
        self, chat_id: int, photo: bytes, caption: str, keyboard: InlineKeyboardMarkup | None = None
    ) -> int | None:
        try:
            sent = await self._bot.send_photo(
                chat_id,
                BufferedInputFile(photo, filename="qris.png"),
                caption=caption,
                reply_markup=keyboard,
            )
        except TelegramAPIError:
            logging.exception("[Transport] send_photo failed chat=%s", chat_id)
            return None
        return sent.message_id

    async def edit_message(
        self, chat_id: int, message_id: int, text: str, keyboard: InlineKeyboardMarkup | None = None
    ) -> int | None:
        """Edit in place; photo messages and stale ids fall back to delete + send."""
        try:
            await self._bot.edit_message_text(text, chat_id=chat_id, message_id=message_id, reply_markup=keyboard)
            return message_id
        except TelegramBadRequest as exc:
            if "message is not modified" in str(exc):
                return message_id
        except TelegramAPIError:
            logging.exception("[Transport] edit_message failed chat=%s message=%s", chat_id, message_id)
        await self.delete_message(chat_id, message_id)
        return await self.send_message(chat_id, text, keyboard)

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            return bool(await self._bot.delete_message(chat_id, message_id))
        except TelegramAPIError as exc:
            logging.warning("[Transport] delete_message failed chat=%s message=%s: %s", chat_id, message_id, exc)
            return False

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        try:
            await self._bot.answer_callback_query(callback_id, text=text)
        except TelegramAPIError as exc:
            logging.warning("[Transport] answer_callback failed id=%s: %s", callback_id, exc)
