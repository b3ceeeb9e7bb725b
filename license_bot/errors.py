from __future__ import annotations

from typing import Any


class ShopError(RuntimeError):
    pass


class ValidationError(ShopError):
    """Rejected before any order is created; ``code`` selects the user text."""

    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code)
        self.code = code
        self.details = details


class InventoryExhausted(ShopError):
    def __init__(self, product: str) -> None:
        super().__init__(f"INVENTORY_EXHAUSTED:{product}")
        self.product = product


class AlreadyResolved(ShopError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"ORDER_ALREADY_RESOLVED:{order_id}")
        self.order_id = order_id


class StoreConflict(AlreadyResolved):
    """Compare-and-swap on the order state found it no longer active."""


class GatewayTransientError(ShopError):
    pass


class Unauthorized(ShopError):
    def __init__(self, chat_id: int, order_id: str) -> None:
        super().__init__(f"ORDER_CHAT_MISMATCH:{order_id}")
        self.chat_id = chat_id
        self.order_id = order_id
