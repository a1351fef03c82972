"""
Reconciliation Worker - polls the accrual service for one order until a verdict.

Per poll:
- PROCESSED / INVALID: persist the verdict (and credit) in one transaction, exit
- REGISTERED / NEW / PROCESSING: keep polling, nothing is persisted
- not registered (204): keep polling
- rate limited (429): wait Retry-After (or the policy default), then poll
- transient failure: log, keep polling at the regular interval

Every worker has a wall-clock deadline. When it passes the worker exits with
DEADLINE_EXCEEDED and the order stays in its stored status for the recovery
sweep. No session is held while waiting.
"""
from __future__ import annotations

import asyncio
import enum
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.exceptions import ConflictError, NotFoundException, TransientIOError
from app.core.logging import bind_order_context, get_logger
from app.db.models.order import OrderStatus
from app.domain.services.accrual_client import (
    AccrualClient,
    AccrualResult,
    AccrualResultKind,
    AccrualStatus,
)
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation.lease import LeaseStatus, OrderLease
from app.domain.services.reconciliation.policy import PollPolicy

logger = get_logger(__name__)

# Errors that are retried at the regular interval
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class WorkerOutcome(str, enum.Enum):
    PROCESSED = "processed"
    INVALID = "invalid"
    ALREADY_TERMINAL = "already_terminal"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    ORDER_NOT_FOUND = "order_not_found"
    LEASE_HELD = "lease_held"
    CANCELLED = "cancelled"


class ReconciliationWorker:
    """One polling state machine, owned by a single asyncio task"""

    def __init__(
        self,
        order_number: str,
        session_factory: async_sessionmaker,
        accrual_client: AccrualClient,
        policy: PollPolicy,
        lease: Optional[OrderLease] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.order_number = order_number
        self._session_factory = session_factory
        self._client = accrual_client
        self._policy = policy
        self._lease = lease
        self._sleep = sleep
        self._clock = clock

        self.last_observed_status: Optional[AccrualStatus] = None
        self.polls = 0
        self._deadline = 0.0

    def _remaining(self) -> float:
        return self._deadline - self._clock()

    async def run(self) -> WorkerOutcome:
        with bind_order_context(self.order_number):
            self._deadline = self._clock() + self._policy.deadline_seconds
            try:
                return await self._run()
            except asyncio.CancelledError:
                logger.info(
                    "Reconciliation worker cancelled",
                    extra_data={"polls": self.polls},
                )
                raise

    async def _run(self) -> WorkerOutcome:
        stored = await self._load_status()
        if stored is None:
            logger.error("Order not found, nothing to reconcile")
            return WorkerOutcome.ORDER_NOT_FOUND
        if stored.is_terminal:
            logger.info(
                "Order already final",
                extra_data={"status": stored.value},
            )
            return WorkerOutcome.ALREADY_TERMINAL

        handle = None
        if self._lease is not None:
            handle = await self._lease.acquire(self.order_number)
            if handle.status == LeaseStatus.HELD_ELSEWHERE:
                return WorkerOutcome.LEASE_HELD

        try:
            return await self._poll_until_terminal()
        finally:
            if handle is not None:
                await self._lease.release(handle)

    async def _load_status(self) -> Optional[OrderStatus]:
        async with self._session_factory() as session:
            order = await OrderService(session).get_order(self.order_number)
            return order.status if order is not None else None

    async def _poll_until_terminal(self) -> WorkerOutcome:
        delay = self._policy.interval_seconds
        while True:
            remaining = self._remaining()
            if remaining <= 0:
                return self._deadline_exceeded()
            await self._sleep(self._policy.clamp(delay, remaining))

            remaining = self._remaining()
            if remaining <= 0:
                return self._deadline_exceeded()
            delay = self._policy.interval_seconds

            self.polls += 1
            try:
                result = await self._client.get_order_accrual(
                    self.order_number, timeout=remaining
                )
            except TransientIOError as e:
                logger.warning(
                    "Accrual poll failed, will retry",
                    extra_data={"poll": self.polls, "error": e.message, "details": e.details},
                )
                continue

            if result.kind == AccrualResultKind.RATE_LIMITED:
                delay = self._policy.rate_limit_delay(result.retry_after)
                logger.warning(
                    "Rate limited by accrual service, backing off",
                    extra_data={"poll": self.polls, "delay_seconds": delay},
                )
                continue

            if result.kind == AccrualResultKind.NOT_REGISTERED:
                logger.debug("Order not registered in accrual service yet")
                continue

            if not result.is_terminal:
                self._observe(result.status)
                continue

            self._observe(result.status)
            try:
                return await self._persist(result)
            except TRANSIENT_DB_ERRORS as e:
                logger.warning(
                    "Failed to persist accrual verdict, will retry",
                    extra_data={"poll": self.polls, "error": str(e)},
                )
                continue

    def _observe(self, status: AccrualStatus) -> None:
        if status != self.last_observed_status:
            logger.info(
                "Accrual status observed",
                extra_data={
                    "previous": self.last_observed_status.value if self.last_observed_status else None,
                    "status": status.value,
                    "poll": self.polls,
                },
            )
            self.last_observed_status = status

    async def _persist(self, result: AccrualResult) -> WorkerOutcome:
        status = OrderStatus(result.status.value)
        async with self._session_factory() as session:
            try:
                await OrderService(session).apply_accrual_result(
                    self.order_number, status, result.accrual
                )
            except ConflictError as e:
                logger.warning(
                    "Order finalized by another writer",
                    extra_data={"details": e.details},
                )
                return WorkerOutcome.ALREADY_TERMINAL
            except NotFoundException:
                logger.error("Order disappeared before the verdict was written")
                return WorkerOutcome.ORDER_NOT_FOUND

        if status == OrderStatus.PROCESSED:
            return WorkerOutcome.PROCESSED
        return WorkerOutcome.INVALID

    def _deadline_exceeded(self) -> WorkerOutcome:
        logger.warning(
            "Reconciliation deadline exceeded, order left for the recovery sweep",
            extra_data={
                "polls": self.polls,
                "last_observed_status": (
                    self.last_observed_status.value if self.last_observed_status else None
                ),
                "deadline_seconds": self._policy.deadline_seconds,
            },
        )
        return WorkerOutcome.DEADLINE_EXCEEDED
