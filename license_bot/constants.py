from __future__ import annotations

from enum import StrEnum
from typing import Final


class ProductType(StrEnum):
    FF = "FF"
    FF_MAX = "FFMAX"


class OrderKind(StrEnum):
    NEW = "new"
    EXTEND = "extend"
    REDEEM = "redeem"


class OrderState(StrEnum):
    ACTIVE = "active"
    COMMITTED = "committed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"


PRODUCT_TITLES: Final = {
    ProductType.FF: "🎮 FREE FIRE",
    ProductType.FF_MAX: "⚡ FREE FIRE MAX",
}

# Whole rupiah per duration in days.
PRICES: Final = {
    ProductType.FF: {1: 15_000, 3: 35_000, 7: 70_000, 14: 120_000, 30: 200_000},
    ProductType.FF_MAX: {1: 18_000, 3: 40_000, 7: 80_000, 14: 140_000, 30: 230_000},
}

POINTS_EARNED: Final = {1: 1, 3: 2, 7: 5, 14: 10, 30: 20}

REDEEM_POINTS_PER_DAY: Final = 12
REDEEM_DURATIONS: Final = (1, 2, 3, 7)


class Callback:
    MAIN_MENU = "main_menu"
    NEW_ORDER = "new_order"
    EXTEND = "extend_user"
    REDEEM = "redeem_points"
    HELP = "help"
    POINTS = "my_points"

    # Prefixes
    PRODUCT_PREFIX = "type_"
    DURATION_PREFIX = "dur_"
    REDEEM_DAYS_PREFIX = "redeem_days_"
    ORDER_CANCEL_PREFIX = "order_cancel_"


class AuditAction:
    START = "start_bot"
    ORDER_CREATED = "order_created"
    ORDER_SUPERSEDED = "order_superseded"
    ORDER_COMMITTED = "order_committed"
    ORDER_EXPIRED = "order_expired"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_FAILED = "order_failed"
    KEYS_ADDED = "license_keys_added"
    BOT_ERROR = "bot_error"
