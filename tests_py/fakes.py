from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from license_bot.qris_pay import PaymentCode, PaymentStatus


@dataclass
class Sent:
    chat_id: int
    text: str
    keyboard: Any
    message_id: int


class FakeTransport:
    def __init__(self) -> None:
        self.messages: list[Sent] = []
        self.photos: list[Sent] = []
        self.edits: list[Sent] = []
        self.deleted: list[tuple[int, int]] = []
        self.callbacks: list[str] = []
        self.send_error: Exception | None = None
        self._next_id = 100

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def send_message(self, chat_id: int, text: str, keyboard: Any = None) -> int:
        if self.send_error is not None:
            raise self.send_error
        sent = Sent(chat_id, text, keyboard, self._new_id())
        self.messages.append(sent)
        return sent.message_id

    async def send_photo(self, chat_id: int, photo: bytes, caption: str, keyboard: Any = None) -> int:
        assert photo.startswith(b"\x89PNG")
        sent = Sent(chat_id, caption, keyboard, self._new_id())
        self.photos.append(sent)
        return sent.message_id

    async def edit_message(self, chat_id: int, message_id: int, text: str, keyboard: Any = None) -> int:
        self.edits.append(Sent(chat_id, text, keyboard, message_id))
        return message_id

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        self.deleted.append((chat_id, message_id))
        return True

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        self.callbacks.append(callback_id)

    def texts_for(self, chat_id: int) -> list[str]:
        return [sent.text for sent in self.messages if sent.chat_id == chat_id]

    def last_text(self, chat_id: int) -> str:
        texts = self.texts_for(chat_id)
        return texts[-1] if texts else ""


class FakeGateway:
    """In-memory payment gateway; every reference stays PENDING until told otherwise."""

    def __init__(self) -> None:
        self.statuses: dict[str, PaymentStatus | Exception] = {}
        self.created: list[tuple[int, str, str]] = []
        self.checks: list[str] = []
        self.create_error: Exception | None = None
        self._counter = 0

    async def create_payment_code(self, amount: int, description: str = "") -> PaymentCode:
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        reference = f"trx_{self._counter}"
        self.created.append((amount, description, reference))
        return PaymentCode(code=f"00020101021226QRIS{self._counter:04d}", reference=reference)

    async def check_status(self, reference: str) -> PaymentStatus:
        self.checks.append(reference)
        status = self.statuses.get(reference, PaymentStatus.PENDING)
        if isinstance(status, Exception):
            raise status
        return status

    def pay(self, reference: str | None) -> None:
        assert reference is not None
        self.statuses[reference] = PaymentStatus.PAID
