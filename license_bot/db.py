from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sqlalchemy import BigInteger, Integer, String, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .constants import OrderKind, OrderState
from .errors import InventoryExhausted, StoreConflict, ValidationError

MAX_KEY_CLAIM_ATTEMPTS = 5


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    chat_id: Mapped[int] = mapped_column("chatId", BigInteger, primary_key=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    first_name: Mapped[str | None] = mapped_column("firstName", String, nullable=True)
    points: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[str] = mapped_column("createdAt", String, default=lambda: _now())


class Order(Base):
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column("orderId", String, primary_key=True)
    chat_id: Mapped[int] = mapped_column("chatId", BigInteger, index=True)
    product: Mapped[str] = mapped_column(String)
    kind: Mapped[str] = mapped_column(String)
    duration_days: Mapped[int] = mapped_column("durationDays", Integer)
    price: Mapped[int] = mapped_column(Integer, default=0)
    points: Mapped[int] = mapped_column(Integer, default=0)
    state: Mapped[str] = mapped_column(String, default=OrderState.ACTIVE.value, index=True)
    payment_reference: Mapped[str | None] = mapped_column("paymentReference", String, nullable=True)
    payment_message_id: Mapped[int | None] = mapped_column("paymentMessageId", Integer, nullable=True)
    # Target key for EXTEND, assigned key after a NEW/REDEEM commit.
    license_key: Mapped[str | None] = mapped_column("licenseKey", String, nullable=True)
    license_expires_at: Mapped[str | None] = mapped_column("licenseExpiresAt", String, nullable=True)
    created_at: Mapped[str] = mapped_column("createdAt", String, default=lambda: _now())
    expires_at: Mapped[str] = mapped_column("expiresAt", String)
    resolved_at: Mapped[str | None] = mapped_column("resolvedAt", String, nullable=True)


class LicenseKey(Base):
    __tablename__ = "license_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product: Mapped[str] = mapped_column(String, index=True)
    key: Mapped[str] = mapped_column(String, unique=True)
    order_id: Mapped[str | None] = mapped_column("orderId", String, nullable=True)
    chat_id: Mapped[int | None] = mapped_column("chatId", BigInteger, nullable=True)
    assigned_at: Mapped[str | None] = mapped_column("assignedAt", String, nullable=True)
    expires_at: Mapped[str | None] = mapped_column("expiresAt", String, nullable=True)
    created_at: Mapped[str] = mapped_column("createdAt", String, default=lambda: _now())


class ManualReview(Base):
    __tablename__ = "manual_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column("orderId", String, unique=True)
    chat_id: Mapped[int] = mapped_column("chatId", BigInteger)
    reason: Mapped[str] = mapped_column(String)
    amount: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[str] = mapped_column("createdAt", String, default=lambda: _now())


class Log(Base):
    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column("chatId", BigInteger)
    action: Mapped[str] = mapped_column(String)
    details: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column("createdAt", String, default=lambda: _now())


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def create_engine_for(url: str) -> AsyncEngine:
    if url.startswith("sqlite") and ":///" in url:
        db_file = Path(url.split(":///", 1)[1])
        if db_file.parent != Path("."):
            db_file.parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, future=True)


class DBError(RuntimeError):
    pass


@dataclass(slots=True, frozen=True)
class OrderRecord:
    order_id: str
    chat_id: int
    product: str
    kind: OrderKind
    duration_days: int
    price: int
    points: int
    state: OrderState
    payment_reference: str | None
    payment_message_id: int | None
    license_key: str | None
    license_expires_at: str | None
    created_at: str
    expires_at: str
    resolved_at: str | None

    @property
    def is_active(self) -> bool:
        return self.state is OrderState.ACTIVE


@dataclass(slots=True, frozen=True)
class CommitOutcome:
    order: OrderRecord
    license_key: str
    license_expires_at: str
    points_balance: int


def _to_record(order: Order) -> OrderRecord:
    return OrderRecord(
        order_id=order.order_id,
        chat_id=int(order.chat_id),
        product=order.product,
        kind=OrderKind(order.kind),
        duration_days=int(order.duration_days),
        price=int(order.price),
        points=int(order.points),
        state=OrderState(order.state),
        payment_reference=order.payment_reference,
        payment_message_id=order.payment_message_id,
        license_key=order.license_key,
        license_expires_at=order.license_expires_at,
        created_at=order.created_at,
        expires_at=order.expires_at,
        resolved_at=order.resolved_at,
    )


class DB:
    """Storage for orders, the points ledger, the license pool and the audit log.

    Every order state change goes through a compare-and-swap from ``active``.
    The swap is the first statement of its transaction, so side effects
    written later in the same transaction roll back with it.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> DB:
        return cls(async_sessionmaker(engine, expire_on_commit=False))

    async def ensure_schema(self) -> None:
        async with self._sessions() as session:
            connection = await session.connection()
            await connection.run_sync(Base.metadata.create_all)
            await session.commit()

    async def upsert_user(self, chat_id: int, username: str | None = None, first_name: str | None = None) -> None:
        async with self._sessions() as session:
            user = await session.scalar(select(User).where(User.chat_id == chat_id))
            if user is None:
                session.add(User(chat_id=chat_id, username=username, first_name=first_name, points=0))
            else:
                user.username = username
                user.first_name = first_name
            await session.commit()

    async def get_points(self, chat_id: int) -> int:
        async with self._sessions() as session:
            points = await session.scalar(select(User.points).where(User.chat_id == chat_id))
            return int(points or 0)

    async def set_points(self, chat_id: int, points: int) -> None:
        if points < 0:
            raise DBError("NEGATIVE_POINTS")
        async with self._sessions() as session:
            async with session.begin():
                user = await session.scalar(select(User).where(User.chat_id == chat_id))
                if user is None:
                    session.add(User(chat_id=chat_id, points=points))
                else:
                    user.points = points

    async def create_order(
        self,
        *,
        order_id: str,
        chat_id: int,
        product: str,
        kind: OrderKind,
        duration_days: int,
        price: int,
        points: int,
        ttl_seconds: int,
        payment_reference: str | None = None,
        license_key: str | None = None,
    ) -> OrderRecord:
        created = datetime.now(tz=UTC)
        order = Order(
            order_id=order_id,
            chat_id=chat_id,
            product=product,
            kind=kind.value,
            duration_days=duration_days,
            price=price,
            points=points,
            state=OrderState.ACTIVE.value,
            payment_reference=payment_reference,
            license_key=license_key,
            created_at=created.isoformat(),
            expires_at=(created + timedelta(seconds=ttl_seconds)).isoformat(),
        )
        async with self._sessions() as session:
            session.add(order)
            await session.commit()
            return _to_record(order)

    async def get_order(self, order_id: str) -> OrderRecord | None:
        async with self._sessions() as session:
            order = await session.scalar(select(Order).where(Order.order_id == order_id))
            return _to_record(order) if order is not None else None

    async def list_active_orders(self, chat_id: int | None = None) -> list[OrderRecord]:
        query = select(Order).where(Order.state == OrderState.ACTIVE.value)
        if chat_id is not None:
            query = query.where(Order.chat_id == chat_id)
        async with self._sessions() as session:
            rows = await session.scalars(query.order_by(Order.created_at))
            return [_to_record(row) for row in rows]

    async def set_payment_message(self, order_id: str, message_id: int) -> None:
        async with self._sessions() as session:
            async with session.begin():
                await session.execute(
                    update(Order)
                    .where(Order.order_id == order_id)
                    .values(payment_message_id=message_id)
                    .execution_options(synchronize_session=False)
                )

    @staticmethod
    async def _swap_state(session: AsyncSession, order_id: str, target: OrderState) -> None:
        result = await session.execute(
            update(Order)
            .where(Order.order_id == order_id, Order.state == OrderState.ACTIVE.value)
            .values(state=target.value, resolved_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StoreConflict(order_id)

    async def transition(self, order_id: str, target: OrderState) -> OrderRecord:
        """Move an active order to ``target`` with no other side effects.

        Raises ``StoreConflict`` when the order is no longer active.
        """
        if target is OrderState.ACTIVE:
            raise DBError("INVALID_TRANSITION")
        async with self._sessions() as session:
            async with session.begin():
                await self._swap_state(session, order_id, target)
                order = await session.scalar(select(Order).where(Order.order_id == order_id))
                if order is None:
                    raise DBError("ORDER_NOT_FOUND")
                return _to_record(order)

    async def commit_order(self, order_id: str) -> CommitOutcome:
        """Apply a purchase atomically: state swap, license, ledger.

        Raises ``StoreConflict`` if the order already left ``active``,
        ``InventoryExhausted`` if the pool is empty and ``ValidationError``
        when a redemption no longer fits the balance. Nothing is written in
        either failure case.
        """
        async with self._sessions() as session:
            async with session.begin():
                await self._swap_state(session, order_id, OrderState.COMMITTED)
                order = await session.scalar(select(Order).where(Order.order_id == order_id))
                if order is None:
                    raise DBError("ORDER_NOT_FOUND")

                kind = OrderKind(order.kind)
                if kind is OrderKind.EXTEND:
                    key, expires_at = await self._extend_key(session, order)
                else:
                    key, expires_at = await self._claim_key(session, order)

                if kind is OrderKind.REDEEM:
                    balance = await self._debit_points(session, order.chat_id, order.points)
                else:
                    balance = await self._credit_points(session, order.chat_id, order.points)

                order.license_key = key
                order.license_expires_at = expires_at
                await session.flush()
                return CommitOutcome(
                    order=_to_record(order),
                    license_key=key,
                    license_expires_at=expires_at,
                    points_balance=balance,
                )

    @staticmethod
    async def _claim_key(session: AsyncSession, order: Order) -> tuple[str, str]:
        assigned = datetime.now(tz=UTC)
        expires_at = (assigned + timedelta(days=order.duration_days)).isoformat()
        for _ in range(MAX_KEY_CLAIM_ATTEMPTS):
            candidate = await session.scalar(
                select(LicenseKey)
                .where(LicenseKey.product == order.product, LicenseKey.order_id.is_(None))
                .order_by(LicenseKey.id)
                .limit(1)
            )
            if candidate is None:
                raise InventoryExhausted(order.product)
            result = await session.execute(
                update(LicenseKey)
                .where(LicenseKey.id == candidate.id, LicenseKey.order_id.is_(None))
                .values(
                    order_id=order.order_id,
                    chat_id=order.chat_id,
                    assigned_at=assigned.isoformat(),
                    expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return candidate.key, expires_at
        raise InventoryExhausted(order.product)

    @staticmethod
    async def _extend_key(session: AsyncSession, order: Order) -> tuple[str, str]:
        license_row = await session.scalar(
            select(LicenseKey).where(
                LicenseKey.key == order.license_key,
                LicenseKey.product == order.product,
                LicenseKey.chat_id == order.chat_id,
            )
        )
        if license_row is None:
            raise ValidationError("unknown_license")
        now = datetime.now(tz=UTC)
        current = parse_timestamp(license_row.expires_at) if license_row.expires_at else now
        expires_at = (max(current, now) + timedelta(days=order.duration_days)).isoformat()
        license_row.expires_at = expires_at
        return license_row.key, expires_at

    @staticmethod
    async def _credit_points(session: AsyncSession, chat_id: int, amount: int) -> int:
        result = await session.execute(
            update(User)
            .where(User.chat_id == chat_id)
            .values(points=User.points + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.add(User(chat_id=chat_id, points=amount))
            await session.flush()
            return amount
        balance = await session.scalar(select(User.points).where(User.chat_id == chat_id))
        return int(balance or 0)

    @staticmethod
    async def _debit_points(session: AsyncSession, chat_id: int, amount: int) -> int:
        result = await session.execute(
            update(User)
            .where(User.chat_id == chat_id, User.points >= amount)
            .values(points=User.points - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError("insufficient_points")
        balance = await session.scalar(select(User.points).where(User.chat_id == chat_id))
        return int(balance or 0)

    async def fail_order(self, order_id: str, reason: str) -> OrderRecord:
        """Move an active order to ``failed`` and leave a manual review record for it."""
        async with self._sessions() as session:
            async with session.begin():
                await self._swap_state(session, order_id, OrderState.FAILED)
                order = await session.scalar(select(Order).where(Order.order_id == order_id))
                if order is None:
                    raise DBError("ORDER_NOT_FOUND")
                session.add(
                    ManualReview(order_id=order_id, chat_id=order.chat_id, reason=reason, amount=order.price)
                )
                return _to_record(order)

    async def list_manual_reviews(self) -> list[dict[str, object]]:
        async with self._sessions() as session:
            rows = await session.scalars(select(ManualReview).order_by(ManualReview.id))
            return [
                {
                    "orderId": row.order_id,
                    "chatId": row.chat_id,
                    "reason": row.reason,
                    "amount": row.amount,
                    "createdAt": row.created_at,
                }
                for row in rows
            ]

    async def add_license_keys(self, product: str, keys: list[str]) -> int:
        """Stock the pool; keys already known are skipped. Returns how many were added."""
        unique = list(dict.fromkeys(k for k in keys if k))
        if not unique:
            return 0
        async with self._sessions() as session:
            async with session.begin():
                existing = set(await session.scalars(select(LicenseKey.key).where(LicenseKey.key.in_(unique))))
                fresh = [k for k in unique if k not in existing]
                session.add_all(LicenseKey(product=product, key=k) for k in fresh)
                return len(fresh)

    async def count_available_keys(self, product: str) -> int:
        async with self._sessions() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(LicenseKey)
                .where(LicenseKey.product == product, LicenseKey.order_id.is_(None))
            )
            return int(count or 0)

    async def owns_license(self, chat_id: int, product: str, key: str) -> bool:
        async with self._sessions() as session:
            row = await session.scalar(
                select(LicenseKey.id).where(
                    LicenseKey.key == key,
                    LicenseKey.product == product,
                    LicenseKey.chat_id == chat_id,
                )
            )
            return row is not None

    async def log_action(self, chat_id: int, action: str, details: str = "") -> None:
        try:
            async with self._sessions() as session:
                session.add(Log(chat_id=chat_id, action=action, details=details))
                await session.commit()
        except Exception:
            # Logging must not break bot flow.
            return

    async def count_actions(self, chat_id: int, action: str) -> int:
        async with self._sessions() as session:
            count = await session.scalar(
                select(func.count()).select_from(Log).where(Log.chat_id == chat_id, Log.action == action)
            )
            return int(count or 0)
