from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .errors import GatewayTransientError
from .qris_pay import PaymentStatus

DEADLINE_RESOLVE_ATTEMPTS = 5


class Resolution(StrEnum):
    APPLIED = "applied"
    ALREADY_RESOLVED = "already_resolved"
    # Payment seen but the commit could not run yet; the order stays active.
    DEFERRED = "deferred"
    FAILED = "failed"


StatusCheck = Callable[[str], Awaitable[PaymentStatus]]
Resolver = Callable[[str], Awaitable[Resolution]]
Sleeper = Callable[[float], Awaitable[None]]


class PaymentMonitor:
    """Polling and deadline lifecycle for one pending order.

    The monitor never writes to the store. It only proposes an outcome
    through the resolver callbacks:

    * ``on_paid`` when the gateway reports the payment,
    * ``on_expired`` when the gateway rejects it or the deadline passes,
    * ``on_unfulfilled`` when the deadline passes after a payment was seen
      but never committed.

    ``abandon()`` stops it without calling any of them. The flag is checked
    on every tick and right before each resolver call.
    """

    def __init__(
        self,
        order_id: str,
        reference: str,
        *,
        check_status: StatusCheck,
        on_paid: Resolver,
        on_expired: Resolver,
        on_unfulfilled: Resolver,
        ttl: float,
        poll_interval: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleeper | None = None,
    ) -> None:
        self.order_id = order_id
        self.reference = reference
        self._check_status = check_status
        self._on_paid = on_paid
        self._on_expired = on_expired
        self._on_unfulfilled = on_unfulfilled
        self._ttl = max(0.0, float(ttl))
        self._poll_interval = max(0.0, float(poll_interval))
        self._clock = clock
        self._sleep = sleep or self._interruptible_sleep
        self._abandoned = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._deadline = 0.0
        self._polling = False
        self.payment_confirmed = False
        self.outcome: Resolution | None = None

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._deadline = self._clock() + self._ttl
            self._task = asyncio.create_task(self._run(), name=f"payment-monitor:{self.order_id}")
        return self._task

    def stop(self) -> None:
        """Raise the abandon flag without waiting for the task."""
        self._abandoned.set()

    async def abandon(self) -> None:
        """Raise the abandon flag and wait until the task has exited.

        A task blocked on the gateway call is cancelled instead of waited
        out. Resolver calls are never interrupted.
        """
        self._abandoned.set()
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        if self._polling:
            task.cancel()
        await asyncio.wait({task})

    def _remaining(self) -> float:
        return self._deadline - self._clock()

    async def _interruptible_sleep(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._abandoned.wait(), timeout=delay)

    async def _run(self) -> None:
        try:
            await self._poll_until_deadline()
        except Exception:
            logging.exception("[Monitor] order=%s loop crashed, waiting for deadline", self.order_id)
            while not self.abandoned and self._remaining() > 0:
                await self._sleep(self._remaining())
            await self._finish_at_deadline()

    async def _poll_until_deadline(self) -> None:
        while True:
            if self.abandoned:
                return
            remaining = self._remaining()
            if remaining <= 0:
                await self._finish_at_deadline()
                return

            if self.payment_confirmed:
                if await self._resolve(self._on_paid) is not Resolution.DEFERRED:
                    return
            else:
                status = await self._poll(remaining)
                if status is PaymentStatus.PAID:
                    self.payment_confirmed = True
                    if await self._resolve(self._on_paid) is not Resolution.DEFERRED:
                        return
                elif status is PaymentStatus.FAILED:
                    if await self._resolve(self._on_expired) is not Resolution.DEFERRED:
                        return

            await self._sleep(min(self._poll_interval, max(0.0, self._remaining())))

    async def _poll(self, remaining: float) -> PaymentStatus | None:
        self._polling = True
        try:
            return await asyncio.wait_for(self._check_status(self.reference), timeout=remaining)
        except (GatewayTransientError, TimeoutError) as exc:
            logging.warning("[Monitor] order=%s status check failed: %s", self.order_id, exc)
        except Exception:
            logging.exception("[Monitor] order=%s unexpected status check error", self.order_id)
        finally:
            self._polling = False
        return None

    async def _resolve(self, resolver: Resolver) -> Resolution | None:
        if self.abandoned:
            return None
        try:
            outcome = await resolver(self.order_id)
        except Exception:
            logging.exception("[Monitor] order=%s resolution failed, will retry", self.order_id)
            return Resolution.DEFERRED
        if outcome is not Resolution.DEFERRED:
            self.outcome = outcome
        return outcome

    async def _finish_at_deadline(self) -> None:
        resolver = self._on_unfulfilled if self.payment_confirmed else self._on_expired
        for attempt in range(DEADLINE_RESOLVE_ATTEMPTS):
            outcome = await self._resolve(resolver)
            if outcome is not Resolution.DEFERRED:
                return
            if attempt + 1 < DEADLINE_RESOLVE_ATTEMPTS:
                await self._sleep(self._poll_interval)
        logging.error("[Monitor] order=%s could not be resolved at deadline", self.order_id)
