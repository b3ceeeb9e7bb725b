import pytest

from license_bot.constants import OrderKind, ProductType
from license_bot.errors import ValidationError
from license_bot.helpers import (
    format_rupiah,
    new_order_id,
    normalize_license_key,
    parse_int_suffix,
    parse_order_callback,
    parse_product,
    points_for,
    quote,
    redeem_cost,
    render_qr_png,
)
from license_bot.texts import TEXTS, t


def test_parse_product_accepts_loose_spellings() -> None:
    assert parse_product("ff") is ProductType.FF
    assert parse_product("FF-MAX") is ProductType.FF_MAX
    assert parse_product("ff_max") is ProductType.FF_MAX
    assert parse_product("pubg") is None
    assert parse_product(None) is None


def test_points_and_redeem_tables() -> None:
    assert points_for(1) == 1
    assert points_for(7) == 5
    assert points_for(30) == 20
    assert points_for(2) == 0
    assert redeem_cost(1) == 12
    assert redeem_cost(7) == 84
    assert redeem_cost(5) is None


def test_quote_for_paid_order() -> None:
    offer = quote("ff", "new", 7)
    assert offer.product is ProductType.FF
    assert offer.kind is OrderKind.NEW
    assert offer.price == 70000
    assert offer.points == 5

    extend = quote(ProductType.FF_MAX, OrderKind.EXTEND, 30)
    assert extend.price == 230000
    assert extend.points == 20


def test_quote_for_redemption_is_free_and_costs_points() -> None:
    offer = quote(ProductType.FF, OrderKind.REDEEM, 3)
    assert offer.price == 0
    assert offer.points == 36


def test_quote_rejects_unknown_inputs() -> None:
    with pytest.raises(ValidationError) as product_error:
        quote("cod", "new", 7)
    assert product_error.value.code == "invalid_product"

    with pytest.raises(ValidationError) as kind_error:
        quote("ff", "gift", 7)
    assert kind_error.value.code == "invalid_kind"

    with pytest.raises(ValidationError) as duration_error:
        quote("ff", "new", 2)
    assert duration_error.value.code == "invalid_duration"

    with pytest.raises(ValidationError):
        quote("ff", "redeem", 30)


def test_format_rupiah() -> None:
    assert format_rupiah(15000) == "Rp 15.000"
    assert format_rupiah(230000) == "Rp 230.000"
    assert format_rupiah(0) == "Rp 0"


def test_parse_int_suffix() -> None:
    assert parse_int_suffix("dur_7", "dur_") == 7
    assert parse_int_suffix("dur_0", "dur_") is None
    assert parse_int_suffix("dur_x", "dur_") is None
    assert parse_int_suffix("redeem_days_3", "dur_") is None


def test_parse_order_callback() -> None:
    assert parse_order_callback("order_cancel_ord_1", "order_cancel_") == "ord_1"
    assert parse_order_callback("order_cancel_", "order_cancel_") is None
    assert parse_order_callback("main_menu", "order_cancel_") is None


def test_normalize_license_key() -> None:
    assert normalize_license_key("  ABC-123 ") == "ABC-123"
    assert normalize_license_key("two words") is None
    assert normalize_license_key("") is None
    assert normalize_license_key("x" * 65) is None


def test_new_order_ids_are_unique() -> None:
    ids = {new_order_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(order_id.startswith("ord_") for order_id in ids)


def test_render_qr_png() -> None:
    assert render_qr_png("00020101021226QRIS").startswith(b"\x89PNG")


def test_texts_accept_a_key_placeholder() -> None:
    rendered = t("en", "extend_choose_duration", key="FF-OWNED")
    assert "<code>FF-OWNED</code>" in rendered

    success = t(
        "id",
        "purchase_success",
        order_id="ord_1",
        product="Free Fire",
        key="FF-KEY-1",
        expires="2026-01-01",
        points=5,
        balance=5,
    )
    assert "FF-KEY-1" in success and "ord_1" in success


def test_texts_fall_back_to_indonesian_and_key_name() -> None:
    assert set(TEXTS["en"]) == set(TEXTS["id"])
    assert t("xx", "order_cancelled", order_id="ord_9") == TEXTS["id"]["order_cancelled"].format(order_id="ord_9")
    assert t("en", "missing_text") == "missing_text"
