"""
Reconciliation Supervisor - runs one worker task per accepted order.

Workers live independently of the HTTP request that accepted the order.
The supervisor keeps the in-flight registry (one task per order number in
this process), starts workers for orders left NEW/PROCESSING by a crash or a
deadline (recovery sweep) and cancels everything on shutdown.
"""
from __future__ import annotations

import asyncio
import functools
import time
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.logging import get_logger, log_async_operation
from app.domain.services.accrual_client import AccrualClient
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation.lease import OrderLease
from app.domain.services.reconciliation.policy import PollPolicy
from app.domain.services.reconciliation.worker import ReconciliationWorker, WorkerOutcome

logger = get_logger(__name__)


class ReconciliationSupervisor:
    """Owns all reconciliation worker tasks of one process"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        accrual_client: AccrualClient,
        policy: Optional[PollPolicy] = None,
        lease: Optional[OrderLease] = None,
        sweep_grace_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._client = accrual_client
        self._policy = policy or PollPolicy.from_settings()
        self._lease = lease
        self._sweep_grace_seconds = (
            settings.RECONCILE_SWEEP_GRACE_SECONDS
            if sweep_grace_seconds is None else sweep_grace_seconds
        )
        self._sleep = sleep
        self._clock = clock

        self._tasks: Dict[str, asyncio.Task] = {}
        self._closing = False
        # last finished outcome per order number, for health and tests
        self.outcomes: Dict[str, WorkerOutcome] = {}

    @property
    def accrual_client(self) -> AccrualClient:
        return self._client

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def is_closing(self) -> bool:
        return self._closing

    def is_running(self, order_number: str) -> bool:
        task = self._tasks.get(order_number)
        return task is not None and not task.done()

    def _build_worker(self, order_number: str) -> ReconciliationWorker:
        return ReconciliationWorker(
            order_number=order_number,
            session_factory=self._session_factory,
            accrual_client=self._client,
            policy=self._policy,
            lease=self._lease,
            sleep=self._sleep,
            clock=self._clock,
        )

    def start(self, order_number: str) -> bool:
        """
        Schedule a worker for the order without waiting for it.

        Returns False, never raises, when the supervisor is shutting down,
        a worker for this order is already in flight, or the task could not
        be created. The order then stays NEW and the sweep picks it up.
        """
        if self._closing:
            logger.warning(
                "Supervisor shutting down, worker not started",
                extra_data={"order_number": order_number},
            )
            return False
        if self.is_running(order_number):
            return False

        try:
            worker = self._build_worker(order_number)
            task = asyncio.get_running_loop().create_task(
                worker.run(), name=f"accrual-{order_number}"
            )
        except Exception as e:
            logger.error(
                "Failed to start reconciliation worker",
                extra_data={"order_number": order_number, "error": str(e)},
                exc_info=True,
            )
            return False

        self._tasks[order_number] = task
        task.add_done_callback(functools.partial(self._on_worker_done, order_number))
        logger.info(
            "Reconciliation worker started",
            extra_data={"order_number": order_number, "in_flight": len(self._tasks)},
        )
        return True

    def _on_worker_done(self, order_number: str, task: asyncio.Task) -> None:
        if self._tasks.get(order_number) is task:
            del self._tasks[order_number]

        if task.cancelled():
            self.outcomes[order_number] = WorkerOutcome.CANCELLED
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "Reconciliation worker crashed",
                extra_data={"order_number": order_number, "error": str(exc)},
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return

        outcome = task.result()
        self.outcomes[order_number] = outcome
        logger.info(
            "Reconciliation worker finished",
            extra_data={"order_number": order_number, "outcome": outcome.value},
        )

    @log_async_operation("recovery_sweep")
    async def sweep(self, limit: Optional[int] = None) -> int:
        """
        Start workers for non-terminal orders older than the grace period.

        Returns:
            Number of workers started
        """
        batch = limit or settings.RECONCILE_SWEEP_BATCH_SIZE
        async with self._session_factory() as session:
            numbers = await OrderService(session).list_pending_orders(
                older_than_seconds=self._sweep_grace_seconds,
                limit=batch,
            )

        started = 0
        for number in numbers:
            if self.start(number):
                started += 1

        logger.info(
            "Recovery sweep completed",
            extra_data={"pending": len(numbers), "started": started},
        )
        return started

    async def wait_idle(self) -> None:
        """Wait until every in-flight worker has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work, cancel in-flight workers and wait for them"""
        self._closing = True
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info("Cancelling reconciliation workers", extra_data={"count": len(tasks)})
        for task in tasks:
            task.cancel()
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                "Reconciliation workers did not stop in time",
                extra_data={"count": len(pending)},
            )
