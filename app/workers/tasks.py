"""
Celery Tasks for Order Reconciliation

Out-of-process side of reconciliation: the periodic recovery sweep and a
single-order task. Each task runs its own event loop with a task-scoped
engine, Redis client and accrual client, and waits for every worker it
started before returning.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Optional

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger, set_correlation_id
from app.db.database import task_session_factory
from app.domain.services.accrual_client import AccrualClient
from app.domain.services.reconciliation import (
    OrderLease,
    PollPolicy,
    ReconciliationSupervisor,
)

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # Close the Redis singleton before the loop, so the next task does
            # not reuse a client bound to a closed loop
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@asynccontextmanager
async def task_supervisor() -> AsyncIterator[ReconciliationSupervisor]:
    """Supervisor wired to task-scoped resources, drained before they close"""
    policy = PollPolicy.from_settings()
    lease = OrderLease(
        ttl_seconds=int(policy.deadline_seconds) + settings.ACCRUAL_LEASE_MARGIN_SECONDS
    )
    async with task_session_factory() as session_factory:
        async with AccrualClient() as client:
            supervisor = ReconciliationSupervisor(
                session_factory=session_factory,
                accrual_client=client,
                policy=policy,
                lease=lease,
            )
            try:
                yield supervisor
                await supervisor.wait_idle()
            finally:
                await supervisor.shutdown()


def _summarize(supervisor: ReconciliationSupervisor) -> dict:
    counts = Counter(outcome.value for outcome in supervisor.outcomes.values())
    return dict(counts)


@celery_app.task(name="app.workers.tasks.sweep_pending_orders")
def sweep_pending_orders(limit: Optional[int] = None) -> dict:
    """
    Start a worker for every non-terminal order past the grace period
    and wait for all of them.
    """

    async def _sweep():
        async with task_supervisor() as supervisor:
            started = await supervisor.sweep(limit)
            await supervisor.wait_idle()
            outcomes = _summarize(supervisor)

        logger.info(
            "Pending orders sweep finished",
            extra_data={"started": started, "outcomes": outcomes},
        )
        return {"started": started, "outcomes": outcomes}

    return run_async(_sweep())


@celery_app.task(name="app.workers.tasks.reconcile_order")
def reconcile_order(order_number: str) -> dict:
    """Reconcile one order to completion (manual retries and operations)"""

    async def _reconcile():
        async with task_supervisor() as supervisor:
            started = supervisor.start(order_number)
            await supervisor.wait_idle()
            outcome = supervisor.outcomes.get(order_number)

        return {
            "order_number": order_number,
            "started": started,
            "outcome": outcome.value if outcome is not None else None,
        }

    return run_async(_reconcile())
