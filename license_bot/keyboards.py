from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from .constants import PRICES, PRODUCT_TITLES, REDEEM_DURATIONS, Callback, ProductType
from .helpers import format_rupiah, points_for, redeem_cost
from .texts import t


def _inline_keyboard(rows: list[list[InlineKeyboardButton]]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=rows)


def _pairs(buttons: list[InlineKeyboardButton]) -> list[list[InlineKeyboardButton]]:
    return [buttons[i:i + 2] for i in range(0, len(buttons), 2)]


def build_main_menu_keyboard(lang: str) -> InlineKeyboardMarkup:
    return _inline_keyboard(
        [
            [InlineKeyboardButton(text=t(lang, "menu_new"), callback_data=Callback.NEW_ORDER)],
            [
                InlineKeyboardButton(text=t(lang, "menu_extend"), callback_data=Callback.EXTEND),
                InlineKeyboardButton(text=t(lang, "menu_redeem"), callback_data=Callback.REDEEM),
            ],
            [
                InlineKeyboardButton(text=t(lang, "menu_points"), callback_data=Callback.POINTS),
                InlineKeyboardButton(text=t(lang, "menu_help"), callback_data=Callback.HELP),
            ],
        ]
    )


def build_back_to_menu(lang: str) -> InlineKeyboardMarkup:
    return _inline_keyboard([[InlineKeyboardButton(text=t(lang, "back"), callback_data=Callback.MAIN_MENU)]])


def build_points_keyboard(lang: str) -> InlineKeyboardMarkup:
    return _inline_keyboard(
        [
            [InlineKeyboardButton(text=t(lang, "menu_redeem"), callback_data=Callback.REDEEM)],
            [
                InlineKeyboardButton(text=t(lang, "menu_new"), callback_data=Callback.NEW_ORDER),
                InlineKeyboardButton(text=t(lang, "menu_home"), callback_data=Callback.MAIN_MENU),
            ],
        ]
    )


def build_product_keyboard(lang: str) -> InlineKeyboardMarkup:
    return _inline_keyboard(
        [
            [
                InlineKeyboardButton(text=PRODUCT_TITLES[product], callback_data=f"{Callback.PRODUCT_PREFIX}{product.value.lower()}")
                for product in ProductType
            ],
            [InlineKeyboardButton(text=t(lang, "back"), callback_data=Callback.MAIN_MENU)],
        ]
    )


def build_duration_keyboard(lang: str, product: ProductType) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(
            text=t(lang, "duration_button", days=days, price=format_rupiah(price), points=points_for(days)),
            callback_data=f"{Callback.DURATION_PREFIX}{days}",
        )
        for days, price in sorted(PRICES[product].items())
    ]
    rows = [[button] for button in buttons]
    rows.append([InlineKeyboardButton(text=t(lang, "back"), callback_data=Callback.MAIN_MENU)])
    return _inline_keyboard(rows)


def build_redeem_keyboard(lang: str) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(
            text=t(lang, "redeem_button", days=days, cost=redeem_cost(days)),
            callback_data=f"{Callback.REDEEM_DAYS_PREFIX}{days}",
        )
        for days in REDEEM_DURATIONS
    ]
    rows = _pairs(buttons)
    rows.append([InlineKeyboardButton(text=t(lang, "back"), callback_data=Callback.MAIN_MENU)])
    return _inline_keyboard(rows)


def build_payment_keyboard(lang: str, order_id: str) -> InlineKeyboardMarkup:
    return _inline_keyboard(
        [[InlineKeyboardButton(text=t(lang, "cancel_order"), callback_data=f"{Callback.ORDER_CANCEL_PREFIX}{order_id}")]]
    )


def build_after_order_keyboard(lang: str) -> InlineKeyboardMarkup:
    return _inline_keyboard(
        [
            [InlineKeyboardButton(text=t(lang, "menu_new"), callback_data=Callback.NEW_ORDER)],
            [InlineKeyboardButton(text=t(lang, "menu_home"), callback_data=Callback.MAIN_MENU)],
        ]
    )
