from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from .constants import PRODUCT_TITLES, AuditAction, OrderKind, OrderState, ProductType
from .conversation import AwaitingPayment
from .db import DB, CommitOutcome, OrderRecord, parse_timestamp
from .errors import AlreadyResolved, GatewayTransientError, InventoryExhausted, Unauthorized, ValidationError
from .helpers import format_rupiah, new_order_id, normalize_license_key, quote, render_qr_png
from .keyboards import build_after_order_keyboard, build_payment_keyboard
from .monitor import PaymentMonitor, Resolution
from .qris_pay import PaymentCode, PaymentStatus
from .session_store import FileConversationStore
from .texts import t
from .transport import ChatTransport

INVENTORY_POLICY_FAIL = "fail"
INVENTORY_POLICY_RETRY = "retry"


class PaymentGateway(Protocol):
    async def create_payment_code(self, amount: int, description: str = "") -> PaymentCode: ...

    async def check_status(self, reference: str) -> PaymentStatus: ...


@dataclass(slots=True, frozen=True)
class CoordinatorSettings:
    poll_interval: float = 20.0
    ttl: float = 600.0
    inventory_policy: str = INVENTORY_POLICY_FAIL
    language: str = "id"
    support_contact: str = "@admin"
    admin_chat_id: int = 0


def format_expiry(value: str) -> str:
    return parse_timestamp(value).strftime("%d-%m-%Y %H:%M UTC")


def product_title(product: str) -> str:
    try:
        return PRODUCT_TITLES[ProductType(product)]
    except ValueError:
        return product


class OrderCoordinator:
    """Creates orders, runs one payment monitor per active order and applies outcomes.

    This is the only component that changes an order's state. Resolutions
    for one order are serialized by a per-order lock and arbitrated by the
    store's compare-and-swap, so commit, expire and cancel apply at most one
    set of side effects between them.
    """

    def __init__(
        self,
        db: DB,
        gateway: PaymentGateway,
        transport: ChatTransport,
        states: FileConversationStore,
        settings: CoordinatorSettings | None = None,
    ) -> None:
        self._db = db
        self._gateway = gateway
        self._transport = transport
        self._states = states
        self._settings = settings or CoordinatorSettings()
        self._monitors: dict[str, PaymentMonitor] = {}
        self._order_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._chat_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()
        self._deferred_notified: set[str] = set()

    @property
    def settings(self) -> CoordinatorSettings:
        return self._settings

    def monitor_for(self, order_id: str) -> PaymentMonitor | None:
        return self._monitors.get(order_id)

    @property
    def running_monitors(self) -> int:
        return sum(1 for monitor in self._monitors.values() if not monitor.done)

    def _order_lock(self, order_id: str) -> asyncio.Lock:
        lock = self._order_locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._order_locks[order_id] = lock
        return lock

    def _chat_lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    async def create_order(
        self,
        chat_id: int,
        product: ProductType | str,
        kind: OrderKind | str,
        duration_days: int,
        license_key: str | None = None,
    ) -> OrderRecord:
        offer = quote(product, kind, duration_days)

        if offer.kind is OrderKind.REDEEM:
            balance = await self._db.get_points(chat_id)
            if balance < offer.points:
                raise ValidationError("insufficient_points", cost=offer.points)

        target_key: str | None = None
        if offer.kind is OrderKind.EXTEND:
            target_key = normalize_license_key(license_key or "")
            if target_key is None or not await self._db.owns_license(chat_id, offer.product.value, target_key):
                raise ValidationError("unknown_license")

        order_id = new_order_id()
        async with self._chat_lock(chat_id):
            payment: PaymentCode | None = None
            if offer.kind is not OrderKind.REDEEM:
                try:
                    payment = await self._gateway.create_payment_code(
                        offer.price, f"{offer.product.value} {offer.duration_days}d {order_id}"
                    )
                except GatewayTransientError as exc:
                    logging.warning("[Orders] payment code unavailable chat=%s: %s", chat_id, exc)
                    raise ValidationError("payment_unavailable") from exc

            await self._supersede(chat_id)

            record = await self._db.create_order(
                order_id=order_id,
                chat_id=chat_id,
                product=offer.product.value,
                kind=offer.kind,
                duration_days=offer.duration_days,
                price=offer.price,
                points=offer.points,
                ttl_seconds=int(self._settings.ttl),
                payment_reference=payment.reference if payment else None,
                license_key=target_key,
            )
            await self._db.log_action(
                chat_id,
                AuditAction.ORDER_CREATED,
                f"{order_id}:{offer.kind.value}:{offer.product.value}:{offer.duration_days}d:{offer.price}",
            )
            logging.info("[Orders] created order=%s chat=%s kind=%s", order_id, chat_id, offer.kind.value)

            if payment is None:
                await self.resolve_commit(order_id)
                return await self._db.get_order(order_id) or record

            await self._states.set(chat_id, AwaitingPayment(order_id=order_id))
            await self._send_payment_code(record, payment)
            self._start_monitor(record, self._settings.ttl)
            return record

    async def _send_payment_code(self, order: OrderRecord, payment: PaymentCode) -> None:
        lang = self._settings.language
        caption = t(
            lang,
            "payment_caption",
            order_id=order.order_id,
            product=product_title(order.product),
            days=order.duration_days,
            price=format_rupiah(order.price),
            ttl_minutes=int(self._settings.ttl // 60),
        )
        message_id = await self._transport.send_photo(
            order.chat_id,
            render_qr_png(payment.code),
            caption,
            build_payment_keyboard(lang, order.order_id),
        )
        if message_id is not None:
            await self._db.set_payment_message(order.order_id, message_id)

    def _start_monitor(self, order: OrderRecord, ttl: float) -> PaymentMonitor:
        monitor = PaymentMonitor(
            order.order_id,
            order.payment_reference or "",
            check_status=self._gateway.check_status,
            on_paid=self.resolve_commit,
            on_expired=self.resolve_expire,
            on_unfulfilled=self.resolve_unfulfilled,
            ttl=ttl,
            poll_interval=self._settings.poll_interval,
        )
        self._monitors[order.order_id] = monitor
        monitor.start()
        return monitor

    async def _supersede(self, chat_id: int) -> None:
        for previous in await self._db.list_active_orders(chat_id):
            monitor = self._monitors.pop(previous.order_id, None)
            if monitor is not None:
                await monitor.abandon()
            async with self._order_lock(previous.order_id):
                if monitor is not None and monitor.payment_confirmed:
                    await self._fail_for_review(previous.order_id, "payment_not_fulfilled")
                    continue
                try:
                    cancelled = await self._db.transition(previous.order_id, OrderState.CANCELLED)
                except AlreadyResolved:
                    continue
            await self._after_terminal(cancelled)
            await self._db.log_action(chat_id, AuditAction.ORDER_SUPERSEDED, previous.order_id)
            await self._transport.send_message(
                chat_id, t(self._settings.language, "order_superseded", order_id=previous.order_id)
            )

    async def resolve_commit(self, order_id: str) -> Resolution:
        async with self._order_lock(order_id):
            try:
                outcome = await self._db.commit_order(order_id)
            except AlreadyResolved:
                logging.info("[Orders] commit skipped, order=%s already resolved", order_id)
                return Resolution.ALREADY_RESOLVED
            except InventoryExhausted as exc:
                logging.warning("[Orders] inventory exhausted for %s, order=%s", exc.product, order_id)
                return await self._handle_exhausted(order_id)
            except ValidationError as exc:
                logging.warning("[Orders] commit rejected order=%s: %s", order_id, exc.code)
                return await self._handle_rejected_commit(order_id, exc.code)

        logging.info("[Orders] committed order=%s", order_id)
        try:
            await self._after_terminal(outcome.order)
            await self._db.log_action(
                outcome.order.chat_id,
                AuditAction.ORDER_COMMITTED,
                f"{order_id}:{outcome.license_key}:{outcome.order.points}",
            )
            await self._notify_commit(outcome)
        except Exception:
            # The commit is durable; only the follow-up steps are best-effort.
            logging.exception("[Orders] post-commit steps failed order=%s", order_id)
        return Resolution.APPLIED

    async def _handle_exhausted(self, order_id: str) -> Resolution:
        # Caller holds the order lock.
        order = await self._db.get_order(order_id)
        if order is None or not order.is_active:
            return Resolution.ALREADY_RESOLVED

        lang = self._settings.language
        if order.kind is OrderKind.REDEEM:
            try:
                cancelled = await self._db.transition(order_id, OrderState.CANCELLED)
            except AlreadyResolved:
                return Resolution.ALREADY_RESOLVED
            await self._after_terminal(cancelled)
            await self._db.log_action(order.chat_id, AuditAction.ORDER_CANCELLED, f"{order_id}:out_of_stock")
            await self._transport.send_message(order.chat_id, t(lang, "redeem_out_of_stock"))
            return Resolution.FAILED

        if self._settings.inventory_policy == INVENTORY_POLICY_RETRY:
            if order_id not in self._deferred_notified:
                self._deferred_notified.add(order_id)
                await self._transport.send_message(order.chat_id, t(lang, "payment_deferred", order_id=order_id))
            return Resolution.DEFERRED

        return await self._fail_for_review(order_id, "inventory_exhausted")

    async def _handle_rejected_commit(self, order_id: str, code: str) -> Resolution:
        # Caller holds the order lock.
        order = await self._db.get_order(order_id)
        if order is None or not order.is_active:
            return Resolution.ALREADY_RESOLVED
        if order.kind is not OrderKind.REDEEM:
            return await self._fail_for_review(order_id, code)

        try:
            cancelled = await self._db.transition(order_id, OrderState.CANCELLED)
        except AlreadyResolved:
            return Resolution.ALREADY_RESOLVED
        await self._after_terminal(cancelled)
        await self._db.log_action(order.chat_id, AuditAction.ORDER_CANCELLED, f"{order_id}:{code}")
        balance = await self._db.get_points(order.chat_id)
        await self._transport.send_message(
            order.chat_id,
            t(self._settings.language, "error_insufficient_points", cost=order.points, points=balance),
        )
        return Resolution.FAILED

    async def _fail_for_review(self, order_id: str, reason: str) -> Resolution:
        try:
            failed = await self._db.fail_order(order_id, reason)
        except AlreadyResolved:
            return Resolution.ALREADY_RESOLVED
        await self._after_terminal(failed)
        await self._db.log_action(failed.chat_id, AuditAction.ORDER_FAILED, f"{order_id}:{reason}")
        logging.error("[Orders] order=%s failed (%s), manual review recorded", order_id, reason)

        lang = self._settings.language
        await self._transport.send_message(
            failed.chat_id,
            t(lang, "out_of_stock_review", order_id=order_id, support=self._settings.support_contact),
        )
        if self._settings.admin_chat_id:
            await self._transport.send_message(
                self._settings.admin_chat_id,
                t(lang, "admin_review", order_id=order_id, chat_id=failed.chat_id, reason=reason),
            )
        return Resolution.FAILED

    async def resolve_expire(self, order_id: str) -> Resolution:
        async with self._order_lock(order_id):
            try:
                expired = await self._db.transition(order_id, OrderState.EXPIRED)
            except AlreadyResolved:
                logging.info("[Orders] expire skipped, order=%s already resolved", order_id)
                return Resolution.ALREADY_RESOLVED

        await self._after_terminal(expired)
        await self._db.log_action(expired.chat_id, AuditAction.ORDER_EXPIRED, order_id)
        logging.info("[Orders] expired order=%s", order_id)
        lang = self._settings.language
        await self._transport.send_message(
            expired.chat_id,
            t(lang, "order_expired", order_id=order_id),
            build_after_order_keyboard(lang),
        )
        return Resolution.APPLIED

    async def resolve_unfulfilled(self, order_id: str) -> Resolution:
        """Deadline reached after the payment was seen but never committed."""
        async with self._order_lock(order_id):
            return await self._fail_for_review(order_id, "payment_not_fulfilled")

    async def cancel_order(self, chat_id: int, order_id: str) -> Resolution:
        order = await self._db.get_order(order_id)
        if order is None or order.chat_id != chat_id:
            raise Unauthorized(chat_id, order_id)
        if not order.is_active:
            return Resolution.ALREADY_RESOLVED

        monitor = self._monitors.pop(order_id, None)
        if monitor is not None:
            await monitor.abandon()

        async with self._order_lock(order_id):
            # A confirmed payment is never cancelled away.
            if monitor is not None and monitor.payment_confirmed:
                return await self._fail_for_review(order_id, "payment_not_fulfilled")
            try:
                cancelled = await self._db.transition(order_id, OrderState.CANCELLED)
            except AlreadyResolved:
                return Resolution.ALREADY_RESOLVED

        await self._after_terminal(cancelled)
        await self._db.log_action(chat_id, AuditAction.ORDER_CANCELLED, order_id)
        lang = self._settings.language
        await self._transport.send_message(
            chat_id, t(lang, "order_cancelled", order_id=order_id), build_after_order_keyboard(lang)
        )
        return Resolution.APPLIED

    async def cancel_active(self, chat_id: int) -> OrderRecord | None:
        active = await self._db.list_active_orders(chat_id)
        for order in active:
            await self.cancel_order(chat_id, order.order_id)
        return active[-1] if active else None

    async def _after_terminal(self, order: OrderRecord) -> None:
        monitor = self._monitors.pop(order.order_id, None)
        if monitor is not None:
            monitor.stop()
        self._deferred_notified.discard(order.order_id)
        await self._states.clear_if_order(order.chat_id, order.order_id)
        if order.payment_message_id is not None:
            await self._transport.delete_message(order.chat_id, order.payment_message_id)

    async def _notify_commit(self, outcome: CommitOutcome) -> None:
        order = outcome.order
        lang = self._settings.language
        template = {
            OrderKind.NEW: "purchase_success",
            OrderKind.EXTEND: "extend_success",
            OrderKind.REDEEM: "redeem_success",
        }[order.kind]
        await self._transport.send_message(
            order.chat_id,
            t(
                lang,
                template,
                order_id=order.order_id,
                product=product_title(order.product),
                key=outcome.license_key,
                expires=format_expiry(outcome.license_expires_at),
                points=order.points,
                balance=outcome.points_balance,
            ),
            build_after_order_keyboard(lang),
        )

    async def resume_active_orders(self) -> int:
        """Re-attach monitors to orders left active by a previous run."""
        resumed = 0
        now = datetime.now(tz=UTC)
        for order in await self._db.list_active_orders():
            if order.order_id in self._monitors:
                continue
            if order.kind is OrderKind.REDEEM or not order.payment_reference:
                await self.resolve_expire(order.order_id)
                continue
            remaining = (parse_timestamp(order.expires_at) - now).total_seconds()
            if remaining <= 0:
                await self._settle_overdue(order)
                continue
            self._start_monitor(order, remaining)
            resumed += 1
        logging.info("[Orders] resumed %s payment monitor(s)", resumed)
        return resumed

    async def _settle_overdue(self, order: OrderRecord) -> None:
        # One last look so a payment made while the bot was down is not lost.
        try:
            status = await self._gateway.check_status(order.payment_reference or "")
        except Exception:
            logging.exception("[Orders] final status check failed order=%s", order.order_id)
            status = PaymentStatus.PENDING
        if status is PaymentStatus.PAID:
            if await self.resolve_commit(order.order_id) is Resolution.DEFERRED:
                await self.resolve_unfulfilled(order.order_id)
            return
        await self.resolve_expire(order.order_id)

    async def shutdown(self) -> None:
        monitors = list(self._monitors.values())
        self._monitors.clear()
        if monitors:
            await asyncio.gather(*(monitor.abandon() for monitor in monitors))
