from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from .errors import GatewayTransientError

DEFAULT_TIMEOUT = 15.0

PAID_STATUSES = {"paid", "success", "settlement", "completed"}
PENDING_STATUSES = {"pending", "unpaid", "waiting", "created"}
FAILED_STATUSES = {"failed", "expired", "cancel", "cancelled", "canceled", "deny", "denied"}


class PaymentStatus(StrEnum):
    PAID = "PAID"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass(slots=True, frozen=True)
class PaymentCode:
    code: str
    reference: str


def _as_record(data: Any) -> dict[str, Any] | None:
    if isinstance(data, dict):
        return data
    return None


def map_status(raw: Any) -> PaymentStatus:
    status = str(raw or "").strip().lower()
    if status in PAID_STATUSES:
        return PaymentStatus.PAID
    if status in FAILED_STATUSES:
        return PaymentStatus.FAILED
    if status not in PENDING_STATUSES:
        logging.warning("[Gateway] Unknown payment status %r treated as pending", raw)
    return PaymentStatus.PENDING


class QrisGateway:
    """Client for the QRIS payment API: create a dynamic code, look up its status."""

    def __init__(
        self,
        api_base: str,
        api_key: str,
        merchant_id: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        expires_in_seconds: int = 600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = api_base.strip().rstrip("/")
        self._api_key = api_key.strip()
        self._merchant_id = merchant_id.strip()
        self._timeout = timeout
        self._expires_in = expires_in_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return len(self._api_key) > 0

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.enabled:
            raise RuntimeError("QRIS_DISABLED")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._api_base}/{method}",
                    headers={
                        "Content-Type": "application/json",
                        "Authorization": f"Bearer {self._api_key}",
                    },
                    json=params,
                )
        except httpx.HTTPError as exc:
            raise GatewayTransientError(f"QRIS_NETWORK:{method}:{type(exc).__name__}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise GatewayTransientError(f"QRIS_UNAVAILABLE:{method}:{response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise RuntimeError(f"QRIS_BAD_RESPONSE:{method}") from exc

        payload = _as_record(payload)
        if payload is None:
            raise RuntimeError(f"QRIS_BAD_RESPONSE:{method}")

        data = _as_record(payload.get("data"))
        if not response.is_success or not payload.get("success") or data is None:
            error = _as_record(payload.get("error")) or {}
            code = error.get("code", response.status_code)
            name = error.get("message", "unknown")
            raise RuntimeError(f"QRIS_API_ERROR:{method}:{code}:{name}")

        return data

    async def create_payment_code(self, amount: int, description: str = "") -> PaymentCode:
        if amount <= 0:
            raise RuntimeError("QRIS_INVALID_AMOUNT")

        params: dict[str, Any] = {"amount": int(amount), "description": description}
        if self._merchant_id:
            params["merchant_id"] = self._merchant_id
        if self._expires_in > 0:
            params["expires_in"] = int(self._expires_in)

        data = await self._call("qris/create", params)
        code = data.get("qris_content") or data.get("qr_string")
        reference = data.get("transaction_id") or data.get("reference")
        if not isinstance(code, str) or not code or not reference:
            raise RuntimeError("QRIS_INVALID_CODE_RESPONSE")
        return PaymentCode(code=code, reference=str(reference))

    async def check_status(self, reference: str) -> PaymentStatus:
        data = await self._call("qris/status", {"transaction_id": reference})
        return map_status(data.get("status"))
