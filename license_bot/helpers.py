from __future__ import annotations

import io
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime

import qrcode

from .constants import (
    POINTS_EARNED,
    PRICES,
    REDEEM_DURATIONS,
    REDEEM_POINTS_PER_DAY,
    OrderKind,
    ProductType,
)
from .errors import ValidationError

MAX_LICENSE_KEY_LENGTH = 64


@dataclass(slots=True, frozen=True)
class Quote:
    product: ProductType
    kind: OrderKind
    duration_days: int
    price: int
    points: int


def parse_product(raw: str | None) -> ProductType | None:
    normalized = (raw or "").strip().upper().replace("-", "").replace("_", "")
    for product in ProductType:
        if product.value == normalized:
            return product
    return None


def get_price(product: ProductType, days: int) -> int | None:
    return PRICES.get(product, {}).get(days)


def points_for(days: int) -> int:
    """Points credited for a paid purchase of ``days``; durations off the table earn nothing."""
    return POINTS_EARNED.get(days, 0)


def redeem_cost(days: int) -> int | None:
    if days not in REDEEM_DURATIONS:
        return None
    return days * REDEEM_POINTS_PER_DAY


def quote(product: ProductType | str, kind: OrderKind | str, days: int) -> Quote:
    parsed_product = product if isinstance(product, ProductType) else parse_product(product)
    if parsed_product is None:
        raise ValidationError("invalid_product")
    try:
        parsed_kind = OrderKind(kind)
    except ValueError as exc:
        raise ValidationError("invalid_kind") from exc

    if parsed_kind is OrderKind.REDEEM:
        cost = redeem_cost(days)
        if cost is None:
            raise ValidationError("invalid_duration")
        return Quote(parsed_product, parsed_kind, days, price=0, points=cost)

    price = get_price(parsed_product, days)
    if price is None:
        raise ValidationError("invalid_duration")
    return Quote(parsed_product, parsed_kind, days, price=price, points=points_for(days))


def format_rupiah(amount: int) -> str:
    return "Rp " + f"{int(amount):,}".replace(",", ".")


def parse_int_suffix(data: str, prefix: str) -> int | None:
    if not data.startswith(prefix):
        return None
    raw = data[len(prefix):]
    if not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def parse_order_callback(data: str, prefix: str) -> str | None:
    if not data.startswith(prefix):
        return None
    order_id = data[len(prefix):]
    return order_id or None


def normalize_license_key(raw: str) -> str | None:
    key = raw.strip()
    if not key or len(key) > MAX_LICENSE_KEY_LENGTH or any(ch.isspace() for ch in key):
        return None
    return key


def new_order_id() -> str:
    return f"ord_{datetime.now(UTC).strftime('%y%m%d%H%M%S')}_{secrets.token_hex(3)}"


def render_qr_png(payload: str) -> bytes:
    image = qrcode.make(payload)
    buffer = io.BytesIO()
    image.save(buffer, "PNG")
    return buffer.getvalue()
