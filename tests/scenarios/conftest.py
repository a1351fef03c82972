"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- an HTTP client wired to a file-backed database and a real
  ReconciliationSupervisor, so uploads are reconciled in the background
- an accrual service stub answering per order number
- DB assertion helpers (order status, balance, ledger entries)
"""
from decimal import Decimal
from typing import Optional

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.dependencies.auth import get_supervisor
from app.db.database import get_db
from app.db.models.ledger_transaction import LedgerEntryType, LedgerTransaction
from app.db.models.order import OrderStatus
from app.domain.services.accrual_client import AccrualClient
from app.domain.services.ledger_service import LedgerService
from app.domain.services.order_service import OrderService
from app.domain.services.reconciliation import PollPolicy, ReconciliationSupervisor
from app.main import app


# ============================================================================
# Accrual service stub
# ============================================================================


class AccrualStub:
    """
    Per-order scripted answers of the accrual service.

    ``script(number, *responses)`` queues responses for one order; the last
    one repeats. Unknown orders answer 204.
    """

    def __init__(self) -> None:
        self._scripts: dict[str, list[httpx.Response]] = {}
        self.calls: dict[str, int] = {}

    def script(self, number: str, *responses: httpx.Response) -> None:
        self._scripts[number] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        number = request.url.path.rsplit("/", 1)[-1]
        self.calls[number] = self.calls.get(number, 0) + 1
        queue = self._scripts.get(number)
        if not queue:
            return httpx.Response(204)
        return queue.pop(0) if len(queue) > 1 else queue[0]


@pytest.fixture
def accrual_stub() -> AccrualStub:
    return AccrualStub()


# ============================================================================
# Live application
# ============================================================================


@pytest.fixture
async def live_supervisor(file_session_factory, accrual_stub, fake_clock):
    client = AccrualClient(
        base_url="http://accrual.test",
        transport=httpx.MockTransport(accrual_stub),
    )
    supervisor = ReconciliationSupervisor(
        session_factory=file_session_factory,
        accrual_client=client,
        policy=PollPolicy(interval_seconds=1, rate_limit_default_seconds=5, deadline_seconds=60),
        sweep_grace_seconds=0,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )
    yield supervisor
    await supervisor.shutdown(timeout=5)
    await client.aclose()


@pytest.fixture
async def live_client(file_session_factory, live_supervisor):
    """HTTP client whose uploads start real reconciliation workers"""
    async def override_get_db():
        async with file_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_supervisor] = lambda: live_supervisor

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def register(client: httpx.AsyncClient, login: str, password: str = "pw") -> dict:
    """Register and return the auth header for later requests"""
    response = await client.post("/api/user/register", json={"login": login, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": response.headers["Authorization"]}


# ============================================================================
# DB assertions
# ============================================================================


async def assert_order_status(
    session_factory: async_sessionmaker,
    number: str,
    expected: OrderStatus,
    accrual: Optional[Decimal] = None,
):
    async with session_factory() as session:
        order = await OrderService(session).get_order(number)
    assert order is not None, f"order {number} missing"
    assert order.status == expected, f"expected {expected.value}, got {order.status.value}"
    if accrual is not None:
        assert order.accrual == accrual
    return order


async def assert_balance(
    session_factory: async_sessionmaker,
    user_id: int,
    current: Decimal,
    withdrawn: Decimal = Decimal("0.00"),
) -> None:
    async with session_factory() as session:
        balance = await LedgerService(session).get_balance(user_id)
    assert balance.balance == current
    assert balance.total_spent == withdrawn


async def count_entries(
    session_factory: async_sessionmaker,
    number: str,
    entry_type: LedgerEntryType,
) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(LedgerTransaction.id)).where(
                LedgerTransaction.order_number == number,
                LedgerTransaction.entry_type == entry_type,
            )
        )
        return result.scalar_one()
