from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from aiogram.types import InlineKeyboardMarkup

from .constants import (
    POINTS_EARNED,
    PRICES,
    PRODUCT_TITLES,
    REDEEM_DURATIONS,
    REDEEM_POINTS_PER_DAY,
    AuditAction,
    Callback,
    OrderKind,
)
from .conversation import (
    AwaitingExtendKey,
    ChoosingDuration,
    ChoosingProduct,
    ConversationState,
    StateTag,
)
from .db import DB
from .errors import Unauthorized, ValidationError
from .helpers import (
    format_rupiah,
    normalize_license_key,
    parse_int_suffix,
    parse_order_callback,
    parse_product,
    redeem_cost,
)
from .keyboards import (
    build_back_to_menu,
    build_duration_keyboard,
    build_main_menu_keyboard,
    build_points_keyboard,
    build_product_keyboard,
    build_redeem_keyboard,
)
from .orders import OrderCoordinator
from .session_store import FileConversationStore
from .texts import t
from .transport import ChatTransport


class EventKind(StrEnum):
    COMMAND = "command"
    BUTTON = "button"
    TEXT = "text"


@dataclass(slots=True, frozen=True)
class InboundEvent:
    chat_id: int
    kind: EventKind
    payload: str
    first_name: str = ""
    username: str | None = None
    callback_id: str | None = None
    message_id: int | None = None

    @property
    def command(self) -> str:
        head = self.payload.split(maxsplit=1)[0] if self.payload.strip() else ""
        return head.lstrip("/").split("@", 1)[0].lower()

    @property
    def arguments(self) -> list[str]:
        return self.payload.split()[1:]


Handler = Callable[[InboundEvent, ConversationState], Awaitable[None]]


class ConversationDispatcher:
    """Routes normalized chat events to flow handlers.

    Commands and exact buttons are looked up by name, parameterized buttons
    by prefix, and free text by the chat's current state tag. A button that
    does not fit the current state is rejected as an expired flow.
    """

    def __init__(
        self,
        coordinator: OrderCoordinator,
        db: DB,
        states: FileConversationStore,
        transport: ChatTransport,
        *,
        admin_chat_id: int = 0,
    ) -> None:
        self._coordinator = coordinator
        self._db = db
        self._states = states
        self._transport = transport
        self._admin_chat_id = admin_chat_id
        settings = coordinator.settings
        self._lang = settings.language
        self._support = settings.support_contact
        self._ttl_minutes = int(settings.ttl // 60)
        self._poll_seconds = int(settings.poll_interval)

        self._commands: dict[str, Handler] = {
            "start": self._on_start,
            "menu": self._on_menu,
            "points": self._on_points,
            "help": self._on_help,
            "cancel": self._on_cancel_command,
            "addkeys": self._on_add_keys,
        }
        self._buttons: dict[str, Handler] = {
            Callback.MAIN_MENU: self._on_menu,
            Callback.NEW_ORDER: self._on_new_order,
            Callback.EXTEND: self._on_extend,
            Callback.REDEEM: self._on_redeem_menu,
            Callback.HELP: self._on_help,
            Callback.POINTS: self._on_points,
        }
        self._button_prefixes: list[tuple[str, Handler]] = [
            (Callback.PRODUCT_PREFIX, self._on_product),
            (Callback.DURATION_PREFIX, self._on_duration),
            (Callback.REDEEM_DAYS_PREFIX, self._on_redeem_days),
            (Callback.ORDER_CANCEL_PREFIX, self._on_cancel_button),
        ]
        self._text_by_state: dict[StateTag, Handler] = {
            StateTag.EXTEND_KEY: self._on_extend_key,
        }

    async def dispatch(self, event: InboundEvent) -> None:
        try:
            if event.kind is EventKind.BUTTON and event.callback_id:
                await self._transport.answer_callback(event.callback_id, t(self._lang, "processing"))
            state = await self._states.get(event.chat_id)
            handler = self._route(event, state)
            await handler(event, state)
        except ValidationError as exc:
            await self._reply_validation(event.chat_id, exc)
        except Unauthorized as exc:
            logging.warning("[Dispatch] chat=%s referenced foreign order=%s", exc.chat_id, exc.order_id)
            await self._transport.send_message(event.chat_id, t(self._lang, "generic_error"))
        except Exception:
            logging.exception("[Dispatch] handler failed chat=%s kind=%s payload=%s", event.chat_id, event.kind, event.payload)
            await self._db.log_action(event.chat_id, AuditAction.BOT_ERROR, f"{event.kind}:{event.payload}")
            await self._transport.send_message(event.chat_id, t(self._lang, "generic_error"))

    def _route(self, event: InboundEvent, state: ConversationState) -> Handler:
        if event.kind is EventKind.COMMAND:
            return self._commands.get(event.command, self._on_unknown)
        if event.kind is EventKind.BUTTON:
            exact = self._buttons.get(event.payload)
            if exact is not None:
                return exact
            for prefix, handler in self._button_prefixes:
                if event.payload.startswith(prefix):
                    return handler
            return self._on_unknown
        return self._text_by_state.get(state.tag, self._on_free_text)

    async def _reply_validation(self, chat_id: int, exc: ValidationError) -> None:
        key = f"error_{exc.code}"
        params = dict(exc.details)
        if exc.code == "insufficient_points":
            params["points"] = await self._db.get_points(chat_id)
        text = t(self._lang, key, **params)
        if text == key:
            text = t(self._lang, "generic_error")
        await self._transport.send_message(chat_id, text, build_back_to_menu(self._lang))

    async def _show(self, event: InboundEvent, text: str, keyboard: InlineKeyboardMarkup | None = None) -> None:
        if event.kind is EventKind.BUTTON and event.message_id is not None:
            await self._transport.edit_message(event.chat_id, event.message_id, text, keyboard)
            return
        await self._transport.send_message(event.chat_id, text, keyboard)

    async def _on_start(self, event: InboundEvent, state: ConversationState) -> None:
        await self._db.upsert_user(event.chat_id, event.username, event.first_name or None)
        await self._states.clear(event.chat_id)
        await self._db.log_action(event.chat_id, AuditAction.START)
        points = await self._db.get_points(event.chat_id)
        min_price = min(min(table.values()) for table in PRICES.values())
        await self._transport.send_message(
            event.chat_id,
            t(
                self._lang,
                "welcome",
                name=event.first_name or "User",
                points=points,
                min_price=format_rupiah(min_price),
                ttl_minutes=self._ttl_minutes,
            ),
            build_main_menu_keyboard(self._lang),
        )

    async def _on_menu(self, event: InboundEvent, state: ConversationState) -> None:
        await self._states.clear(event.chat_id)
        points = await self._db.get_points(event.chat_id)
        await self._show(event, t(self._lang, "main_menu", points=points), build_main_menu_keyboard(self._lang))

    async def _on_points(self, event: InboundEvent, state: ConversationState) -> None:
        points = await self._db.get_points(event.chat_id)
        earn_table = "\n".join(
            t(self._lang, "earn_line", days=days, points=earned) for days, earned in sorted(POINTS_EARNED.items())
        )
        await self._show(
            event,
            t(self._lang, "points_info", points=points, earn_table=earn_table, rate=REDEEM_POINTS_PER_DAY),
            build_points_keyboard(self._lang),
        )

    async def _on_help(self, event: InboundEvent, state: ConversationState) -> None:
        points = await self._db.get_points(event.chat_id)
        await self._show(
            event,
            t(
                self._lang,
                "help",
                points=points,
                rate=REDEEM_POINTS_PER_DAY,
                ttl_minutes=self._ttl_minutes,
                poll_seconds=self._poll_seconds,
                support=self._support,
            ),
            build_back_to_menu(self._lang),
        )

    async def _on_new_order(self, event: InboundEvent, state: ConversationState) -> None:
        await self._states.set(event.chat_id, ChoosingProduct(kind=OrderKind.NEW))
        await self._show(event, t(self._lang, "choose_product_new"), build_product_keyboard(self._lang))

    async def _on_extend(self, event: InboundEvent, state: ConversationState) -> None:
        await self._states.set(event.chat_id, ChoosingProduct(kind=OrderKind.EXTEND))
        await self._show(event, t(self._lang, "choose_product_extend"), build_product_keyboard(self._lang))

    async def _on_redeem_menu(self, event: InboundEvent, state: ConversationState) -> None:
        await self._states.clear(event.chat_id)
        points = await self._db.get_points(event.chat_id)
        rate_table = "\n".join(
            t(self._lang, "redeem_line", days=days, cost=redeem_cost(days)) for days in REDEEM_DURATIONS
        )
        await self._show(
            event,
            t(self._lang, "redeem_menu", points=points, rate_table=rate_table),
            build_redeem_keyboard(self._lang),
        )

    async def _on_redeem_days(self, event: InboundEvent, state: ConversationState) -> None:
        days = parse_int_suffix(event.payload, Callback.REDEEM_DAYS_PREFIX)
        cost = redeem_cost(days) if days is not None else None
        if days is None or cost is None:
            raise ValidationError("invalid_duration")
        if await self._db.get_points(event.chat_id) < cost:
            raise ValidationError("insufficient_points", cost=cost)
        await self._states.set(event.chat_id, ChoosingProduct(kind=OrderKind.REDEEM, days=days))
        await self._show(event, t(self._lang, "choose_product_redeem", days=days), build_product_keyboard(self._lang))

    async def _on_product(self, event: InboundEvent, state: ConversationState) -> None:
        if not isinstance(state, ChoosingProduct):
            raise ValidationError("flow_expired")
        product = parse_product(event.payload[len(Callback.PRODUCT_PREFIX):])
        if product is None:
            raise ValidationError("invalid_product")

        if state.kind is OrderKind.REDEEM:
            if state.days is None:
                raise ValidationError("flow_expired")
            await self._coordinator.create_order(event.chat_id, product, OrderKind.REDEEM, state.days)
            return

        if state.kind is OrderKind.EXTEND:
            await self._states.set(event.chat_id, AwaitingExtendKey(product=product))
            await self._show(event, t(self._lang, "extend_ask_key", product=PRODUCT_TITLES[product]), build_back_to_menu(self._lang))
            return

        await self._states.set(event.chat_id, ChoosingDuration(kind=OrderKind.NEW, product=product))
        await self._show(
            event,
            t(self._lang, "choose_duration", product=PRODUCT_TITLES[product]),
            build_duration_keyboard(self._lang, product),
        )

    async def _on_extend_key(self, event: InboundEvent, state: ConversationState) -> None:
        if not isinstance(state, AwaitingExtendKey):
            raise ValidationError("flow_expired")
        key = normalize_license_key(event.payload)
        if key is None or not await self._db.owns_license(event.chat_id, state.product.value, key):
            raise ValidationError("unknown_license")
        await self._states.set(
            event.chat_id, ChoosingDuration(kind=OrderKind.EXTEND, product=state.product, license_key=key)
        )
        await self._transport.send_message(
            event.chat_id,
            t(self._lang, "extend_choose_duration", key=key),
            build_duration_keyboard(self._lang, state.product),
        )

    async def _on_duration(self, event: InboundEvent, state: ConversationState) -> None:
        if not isinstance(state, ChoosingDuration):
            raise ValidationError("flow_expired")
        days = parse_int_suffix(event.payload, Callback.DURATION_PREFIX)
        if days is None:
            raise ValidationError("invalid_duration")
        await self._coordinator.create_order(event.chat_id, state.product, state.kind, days, state.license_key)

    async def _on_cancel_button(self, event: InboundEvent, state: ConversationState) -> None:
        order_id = parse_order_callback(event.payload, Callback.ORDER_CANCEL_PREFIX)
        if order_id is None:
            raise ValidationError("flow_expired")
        await self._coordinator.cancel_order(event.chat_id, order_id)

    async def _on_cancel_command(self, event: InboundEvent, state: ConversationState) -> None:
        cancelled = await self._coordinator.cancel_active(event.chat_id)
        if cancelled is None:
            await self._transport.send_message(event.chat_id, t(self._lang, "no_active_order"), build_back_to_menu(self._lang))

    async def _on_add_keys(self, event: InboundEvent, state: ConversationState) -> None:
        if not self._admin_chat_id or event.chat_id != self._admin_chat_id:
            await self._on_unknown(event, state)
            return
        args = event.arguments
        product = parse_product(args[0]) if args else None
        keys = [key for key in (normalize_license_key(raw) for raw in args[1:]) if key]
        if product is None or not keys:
            await self._transport.send_message(event.chat_id, t(self._lang, "addkeys_usage"))
            return
        added = await self._db.add_license_keys(product.value, keys)
        available = await self._db.count_available_keys(product.value)
        await self._db.log_action(event.chat_id, AuditAction.KEYS_ADDED, f"{product.value}:{added}")
        await self._transport.send_message(
            event.chat_id,
            t(self._lang, "keys_added", added=added, product=PRODUCT_TITLES[product], available=available),
        )

    async def _on_free_text(self, event: InboundEvent, state: ConversationState) -> None:
        if state.tag is StateTag.IDLE:
            await self._transport.send_message(event.chat_id, t(self._lang, "hello_hint", name=event.first_name or "User"))
            return
        await self._transport.send_message(event.chat_id, t(self._lang, "use_menu"))

    async def _on_unknown(self, event: InboundEvent, state: ConversationState) -> None:
        await self._transport.send_message(event.chat_id, t(self._lang, "unknown_command"))
