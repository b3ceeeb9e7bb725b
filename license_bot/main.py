from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from aiogram import Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import CallbackQuery, ErrorEvent, Message

from .config import CONFIG
from .constants import AuditAction
from .db import DB, create_engine_for
from .dispatcher import ConversationDispatcher, EventKind, InboundEvent
from .orders import CoordinatorSettings, OrderCoordinator
from .qris_pay import QrisGateway
from .session_store import FileConversationStore
from .transport import TelegramTransport

router = Router()


def message_event(message: Message) -> InboundEvent | None:
    if message.from_user is None or message.text is None:
        return None
    text = message.text.strip()
    return InboundEvent(
        chat_id=message.chat.id,
        kind=EventKind.COMMAND if text.startswith("/") else EventKind.TEXT,
        payload=text,
        first_name=message.from_user.first_name or "",
        username=message.from_user.username,
        message_id=message.message_id,
    )


def callback_event(callback: CallbackQuery) -> InboundEvent | None:
    if callback.data is None:
        return None
    message = callback.message
    chat_id = message.chat.id if message is not None else callback.from_user.id
    return InboundEvent(
        chat_id=chat_id,
        kind=EventKind.BUTTON,
        payload=callback.data,
        first_name=callback.from_user.first_name or "",
        username=callback.from_user.username,
        callback_id=callback.id,
        message_id=message.message_id if message is not None else None,
    )


@router.message(F.text)
async def on_message(message: Message, conversation: ConversationDispatcher) -> None:
    event = message_event(message)
    if event is not None:
        await conversation.dispatch(event)


@router.callback_query(F.data)
async def on_callback(callback: CallbackQuery, conversation: ConversationDispatcher) -> None:
    event = callback_event(callback)
    if event is None:
        await callback.answer()
        return
    await conversation.dispatch(event)


@router.errors()
async def on_error(event: ErrorEvent, db: DB) -> None:
    update = event.update
    error = event.exception
    user_id: int | None = None
    callback_data: str | None = None
    update_type = "unknown"

    if update.callback_query is not None:
        callback_data = update.callback_query.data
        user_id = update.callback_query.from_user.id
        update_type = "callback_query"
    elif update.message is not None and update.message.from_user is not None:
        user_id = update.message.from_user.id
        update_type = "message"

    logging.error(
        "[BotError] updateType=%s userId=%s callbackData=%s message=%s",
        update_type,
        user_id,
        callback_data,
        str(error),
    )
    if user_id is not None:
        await db.log_action(user_id, AuditAction.BOT_ERROR, f"{update_type}: {error}")


def build_gateway() -> QrisGateway:
    gateway = QrisGateway(
        CONFIG.qris_api_base,
        CONFIG.qris_api_key,
        CONFIG.qris_merchant_id,
        timeout=float(CONFIG.qris_timeout),
        expires_in_seconds=CONFIG.payment.ttl,
    )
    if not gateway.enabled:
        logging.warning("[Startup] QRIS_API_KEY is not set, paid orders will be rejected")
    return gateway


def build_settings() -> CoordinatorSettings:
    return CoordinatorSettings(
        poll_interval=float(CONFIG.payment.poll_interval),
        ttl=float(CONFIG.payment.ttl),
        inventory_policy=CONFIG.payment.inventory_policy,
        language=CONFIG.language,
        support_contact=CONFIG.support_contact,
        admin_chat_id=CONFIG.admin_telegram_id,
    )


async def start() -> None:
    logging.basicConfig(
        level=getattr(logging, CONFIG.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    engine = create_engine_for(CONFIG.database_url)
    db = DB.from_engine(engine)
    await db.ensure_schema()

    bot = Bot(
        token=CONFIG.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    transport = TelegramTransport(bot)
    states = FileConversationStore(Path(CONFIG.sessions_dir))
    coordinator = OrderCoordinator(db, build_gateway(), transport, states, build_settings())
    conversation = ConversationDispatcher(
        coordinator, db, states, transport, admin_chat_id=CONFIG.admin_telegram_id
    )

    dispatcher = Dispatcher()
    dispatcher.include_router(router)
    workflow: dict[str, Any] = {"conversation": conversation, "db": db}
    try:
        await coordinator.resume_active_orders()
        await dispatcher.start_polling(bot, polling_timeout=CONFIG.polling_timeout, **workflow)
    finally:
        await coordinator.shutdown()
        await bot.session.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(start())
