from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

from .constants import OrderKind, ProductType


class StateTag(StrEnum):
    IDLE = "idle"
    CHOOSE_PRODUCT = "choose_product"
    CHOOSE_DURATION = "choose_duration"
    EXTEND_KEY = "extend_key"
    AWAITING_PAYMENT = "awaiting_payment"


@dataclass(slots=True, frozen=True)
class Idle:
    tag: ClassVar[StateTag] = StateTag.IDLE


@dataclass(slots=True, frozen=True)
class ChoosingProduct:
    tag: ClassVar[StateTag] = StateTag.CHOOSE_PRODUCT
    kind: OrderKind
    # Redemption picks the duration first.
    days: int | None = None


@dataclass(slots=True, frozen=True)
class ChoosingDuration:
    tag: ClassVar[StateTag] = StateTag.CHOOSE_DURATION
    kind: OrderKind
    product: ProductType
    license_key: str | None = None


@dataclass(slots=True, frozen=True)
class AwaitingExtendKey:
    tag: ClassVar[StateTag] = StateTag.EXTEND_KEY
    product: ProductType


@dataclass(slots=True, frozen=True)
class AwaitingPayment:
    tag: ClassVar[StateTag] = StateTag.AWAITING_PAYMENT
    order_id: str


ConversationState = Idle | ChoosingProduct | ChoosingDuration | AwaitingExtendKey | AwaitingPayment


def order_id_of(state: ConversationState) -> str | None:
    return state.order_id if isinstance(state, AwaitingPayment) else None


def dump_state(state: ConversationState) -> dict[str, Any]:
    payload: dict[str, Any] = {"tag": state.tag.value}
    if isinstance(state, ChoosingProduct):
        payload.update(kind=state.kind.value, days=state.days)
    elif isinstance(state, ChoosingDuration):
        payload.update(kind=state.kind.value, product=state.product.value, licenseKey=state.license_key)
    elif isinstance(state, AwaitingExtendKey):
        payload.update(product=state.product.value)
    elif isinstance(state, AwaitingPayment):
        payload.update(orderId=state.order_id)
    return payload


def load_state(data: Any) -> ConversationState:
    """Rebuild a state from its stored form; anything malformed reads as ``Idle``."""
    if not isinstance(data, dict):
        return Idle()
    try:
        tag = StateTag(data.get("tag"))
        if tag is StateTag.CHOOSE_PRODUCT:
            days = data.get("days")
            return ChoosingProduct(kind=OrderKind(data["kind"]), days=int(days) if days is not None else None)
        if tag is StateTag.CHOOSE_DURATION:
            return ChoosingDuration(
                kind=OrderKind(data["kind"]),
                product=ProductType(data["product"]),
                license_key=data.get("licenseKey"),
            )
        if tag is StateTag.EXTEND_KEY:
            return AwaitingExtendKey(product=ProductType(data["product"]))
        if tag is StateTag.AWAITING_PAYMENT:
            order_id = data.get("orderId")
            if not isinstance(order_id, str) or not order_id:
                return Idle()
            return AwaitingPayment(order_id=order_id)
    except (KeyError, TypeError, ValueError):
        logging.warning("[Conversation] Dropping malformed state %r", data)
    return Idle()
