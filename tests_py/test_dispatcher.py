import asyncio
import tempfile
import unittest
from pathlib import Path

from license_bot.constants import AuditAction, OrderKind, OrderState, ProductType
from license_bot.conversation import (
    AwaitingExtendKey,
    AwaitingPayment,
    ChoosingDuration,
    ChoosingProduct,
    Idle,
)
from license_bot.db import DB, create_engine_for
from license_bot.dispatcher import ConversationDispatcher, EventKind, InboundEvent
from license_bot.orders import CoordinatorSettings, OrderCoordinator
from license_bot.session_store import FileConversationStore
from tests_py.fakes import FakeGateway, FakeTransport

CHAT = 1001
OTHER_CHAT = 2002
ADMIN = 9000


def command(chat_id: int, text: str) -> InboundEvent:
    return InboundEvent(chat_id=chat_id, kind=EventKind.COMMAND, payload=text, first_name="Rina")


def button(chat_id: int, data: str, message_id: int | None = None) -> InboundEvent:
    return InboundEvent(
        chat_id=chat_id,
        kind=EventKind.BUTTON,
        payload=data,
        first_name="Rina",
        callback_id=f"cb-{data}",
        message_id=message_id,
    )


def text(chat_id: int, body: str) -> InboundEvent:
    return InboundEvent(chat_id=chat_id, kind=EventKind.TEXT, payload=body, first_name="Rina")


class TestConversationDispatcher(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.engine = create_engine_for(f"sqlite+aiosqlite:///{root / 'shop.db'}")
        self.db = DB.from_engine(self.engine)
        await self.db.ensure_schema()
        self.gateway = FakeGateway()
        self.transport = FakeTransport()
        self.states = FileConversationStore(root / "sessions")
        self.coordinator = OrderCoordinator(
            self.db,
            self.gateway,
            self.transport,
            self.states,
            CoordinatorSettings(poll_interval=0.01, ttl=5.0, language="en", admin_chat_id=ADMIN),
        )
        self.dispatcher = ConversationDispatcher(
            self.coordinator, self.db, self.states, self.transport, admin_chat_id=ADMIN
        )

    async def asyncTearDown(self) -> None:
        await self.coordinator.shutdown()
        await self.engine.dispose()
        self._tmp.cleanup()

    async def test_start_registers_user_and_shows_menu(self) -> None:
        await self.states.set(CHAT, ChoosingProduct(kind=OrderKind.NEW))

        await self.dispatcher.dispatch(command(CHAT, "/start"))

        welcome = self.transport.messages[-1]
        self.assertIn("Welcome, Rina!", welcome.text)
        self.assertIn("Rp 15.000", welcome.text)
        self.assertIsNotNone(welcome.keyboard)
        self.assertEqual(await self.states.get(CHAT), Idle())
        self.assertEqual(await self.db.count_actions(CHAT, AuditAction.START), 1)

    async def test_button_outside_its_step_is_rejected(self) -> None:
        await self.dispatcher.dispatch(button(CHAT, "dur_7"))

        self.assertIn("no longer valid", self.transport.last_text(CHAT))
        self.assertEqual(await self.db.list_active_orders(CHAT), [])
        self.assertEqual(self.transport.callbacks, ["cb-dur_7"])

    async def test_redeem_over_balance_is_refused_up_front(self) -> None:
        await self.db.set_points(CHAT, 5)

        await self.dispatcher.dispatch(button(CHAT, "redeem_days_1"))

        self.assertIn("You need 12 points and have 5", self.transport.last_text(CHAT))
        self.assertEqual(await self.states.get(CHAT), Idle())
        self.assertEqual(await self.db.list_active_orders(CHAT), [])

    async def test_redeem_flow(self) -> None:
        await self.db.set_points(CHAT, 40)
        await self.db.add_license_keys("FFMAX", ["FREE-MAX"])

        await self.dispatcher.dispatch(button(CHAT, "redeem_days_3"))
        self.assertEqual(await self.states.get(CHAT), ChoosingProduct(kind=OrderKind.REDEEM, days=3))

        await self.dispatcher.dispatch(button(CHAT, "type_ffmax"))

        self.assertEqual(await self.db.get_points(CHAT), 4)
        self.assertIn("FREE-MAX", self.transport.last_text(CHAT))
        self.assertEqual(self.transport.photos, [])

    async def test_purchase_flow(self) -> None:
        await self.db.add_license_keys("FF", ["FF-KEY-1"])

        await self.dispatcher.dispatch(button(CHAT, "new_order", message_id=50))
        self.assertEqual(await self.states.get(CHAT), ChoosingProduct(kind=OrderKind.NEW))
        self.assertEqual(self.transport.edits[-1].message_id, 50)

        await self.dispatcher.dispatch(button(CHAT, "type_ff", message_id=50))
        self.assertEqual(await self.states.get(CHAT), ChoosingDuration(kind=OrderKind.NEW, product=ProductType.FF))

        await self.dispatcher.dispatch(button(CHAT, "dur_30", message_id=50))
        state = await self.states.get(CHAT)
        self.assertIsInstance(state, AwaitingPayment)
        self.assertEqual(self.gateway.created[0][0], 200000)
        self.assertEqual(len(self.transport.photos), 1)

        order = await self.db.get_order(state.order_id)
        monitor = self.coordinator.monitor_for(order.order_id)
        self.gateway.pay(order.payment_reference)
        await asyncio.wait_for(monitor.task, timeout=3)

        self.assertEqual((await self.db.get_order(order.order_id)).state, OrderState.COMMITTED)
        self.assertEqual(await self.db.get_points(CHAT), 20)
        self.assertEqual(await self.states.get(CHAT), Idle())

    async def test_extend_flow_requires_owned_key(self) -> None:
        await self.db.add_license_keys("FF", ["FF-OWNED"])
        bought = await self.coordinator.create_order(CHAT, ProductType.FF, OrderKind.NEW, 1)
        await self.coordinator.monitor_for(bought.order_id).abandon()
        await self.coordinator.resolve_commit(bought.order_id)

        await self.dispatcher.dispatch(button(CHAT, "extend_user"))
        await self.dispatcher.dispatch(button(CHAT, "type_ff"))
        self.assertEqual(await self.states.get(CHAT), AwaitingExtendKey(product=ProductType.FF))

        await self.dispatcher.dispatch(text(CHAT, "SOMEONE-ELSES"))
        self.assertIn("not registered to your account", self.transport.last_text(CHAT))
        self.assertEqual(await self.states.get(CHAT), AwaitingExtendKey(product=ProductType.FF))

        await self.dispatcher.dispatch(text(CHAT, " FF-OWNED "))
        self.assertEqual(
            await self.states.get(CHAT),
            ChoosingDuration(kind=OrderKind.EXTEND, product=ProductType.FF, license_key="FF-OWNED"),
        )
        self.assertIn("Key: <code>FF-OWNED</code>", self.transport.last_text(CHAT))

        await self.dispatcher.dispatch(button(CHAT, "dur_7"))
        state = await self.states.get(CHAT)
        self.assertIsInstance(state, AwaitingPayment)
        order = await self.db.get_order(state.order_id)
        self.assertEqual(order.kind, OrderKind.EXTEND)
        self.assertEqual(order.license_key, "FF-OWNED")

    async def test_cancel_button_for_foreign_order(self) -> None:
        order = await self.coordinator.create_order(CHAT, ProductType.FF, OrderKind.NEW, 1)

        await self.dispatcher.dispatch(button(OTHER_CHAT, f"order_cancel_{order.order_id}"))

        self.assertIn("Something went wrong", self.transport.last_text(OTHER_CHAT))
        self.assertEqual((await self.db.get_order(order.order_id)).state, OrderState.ACTIVE)

    async def test_cancel_command(self) -> None:
        await self.dispatcher.dispatch(command(CHAT, "/cancel"))
        self.assertIn("no active order", self.transport.last_text(CHAT))

        order = await self.coordinator.create_order(CHAT, ProductType.FF, OrderKind.NEW, 1)
        await self.dispatcher.dispatch(command(CHAT, "/cancel"))

        self.assertEqual((await self.db.get_order(order.order_id)).state, OrderState.CANCELLED)
        self.assertIn("was cancelled", self.transport.last_text(CHAT))

    async def test_addkeys_is_admin_only(self) -> None:
        await self.dispatcher.dispatch(command(CHAT, "/addkeys FF KEY-A"))
        self.assertIn("Unknown action", self.transport.last_text(CHAT))
        self.assertEqual(await self.db.count_available_keys("FF"), 0)

        await self.dispatcher.dispatch(command(ADMIN, "/addkeys ff KEY-A KEY-B KEY-A"))
        self.assertIn("Added 2 key(s)", self.transport.last_text(ADMIN))
        self.assertEqual(await self.db.count_available_keys("FF"), 2)

        await self.dispatcher.dispatch(command(ADMIN, "/addkeys"))
        self.assertIn("Usage", self.transport.last_text(ADMIN))

    async def test_free_text(self) -> None:
        await self.dispatcher.dispatch(text(CHAT, "halo"))
        self.assertIn("Hi Rina!", self.transport.last_text(CHAT))

        await self.states.set(CHAT, ChoosingProduct(kind=OrderKind.NEW))
        await self.dispatcher.dispatch(text(CHAT, "FF please"))
        self.assertIn("inline menu", self.transport.last_text(CHAT))

    async def test_points_and_help(self) -> None:
        await self.db.set_points(CHAT, 17)

        await self.dispatcher.dispatch(command(CHAT, "/points"))
        self.assertIn("17 points", self.transport.last_text(CHAT))

        await self.dispatcher.dispatch(command(CHAT, "/help"))
        self.assertIn("Contact @admin", self.transport.last_text(CHAT))

    async def test_handler_failure_is_reported(self) -> None:
        self.gateway.create_error = RuntimeError("QRIS_API_ERROR:qris/create:500:boom")
        await self.states.set(CHAT, ChoosingDuration(kind=OrderKind.NEW, product=ProductType.FF))

        await self.dispatcher.dispatch(button(CHAT, "dur_1"))

        self.assertIn("Something went wrong", self.transport.last_text(CHAT))
        self.assertEqual(await self.db.count_actions(CHAT, AuditAction.BOT_ERROR), 1)
        self.assertEqual(await self.db.list_active_orders(CHAT), [])
