"""
Scenario: full order lifecycle through the HTTP API.

Covers:
- Register -> upload -> background reconciliation -> balance -> withdraw
- Rejected order ends INVALID without touching the balance
- Rate limiting from the accrual service delays but does not lose the verdict
- Orders left pending are finished by the recovery sweep
"""
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from app.db.models.ledger_transaction import LedgerEntryType
from app.db.models.order import OrderStatus
from app.db.models.user import User
from app.domain.services.order_service import OrderService, SubmitOrderResult
from app.domain.services.reconciliation import WorkerOutcome
from tests.scenarios.conftest import (
    assert_balance,
    assert_order_status,
    count_entries,
    register,
)
from tests.support import accrual_json


async def _user_id(session_factory, login: str) -> int:
    async with session_factory() as session:
        result = await session.execute(select(User.id).where(User.login == login))
        return result.scalar_one()


@pytest.mark.scenario
class TestOrderLifecycle:

    @pytest.mark.asyncio
    async def test_upload_accrue_and_withdraw(
        self, live_client, live_supervisor, accrual_stub, file_session_factory
    ):
        accrual_stub.script(
            "12345678903",
            accrual_json("12345678903", "REGISTERED"),
            accrual_json("12345678903", "PROCESSING"),
            accrual_json("12345678903", "PROCESSED", 729.98),
        )
        headers = await register(live_client, "alice")
        user_id = await _user_id(file_session_factory, "alice")

        response = await live_client.post(
            "/api/user/orders", content="12345678903",
            headers={**headers, "Content-Type": "text/plain"},
        )
        assert response.status_code == 202

        await live_supervisor.wait_idle()
        assert live_supervisor.outcomes["12345678903"] == WorkerOutcome.PROCESSED
        assert accrual_stub.calls["12345678903"] == 3

        orders = await live_client.get("/api/user/orders", headers=headers)
        assert orders.status_code == 200
        assert orders.json()[0]["status"] == "PROCESSED"
        assert orders.json()[0]["accrual"] == 729.98

        balance = await live_client.get("/api/user/balance", headers=headers)
        assert balance.json() == {"current": 729.98, "withdrawn": 0}

        too_much = await live_client.post(
            "/api/user/balance/withdraw",
            json={"order": "2377225624", "sum": 751},
            headers=headers,
        )
        assert too_much.status_code == 402

        withdraw = await live_client.post(
            "/api/user/balance/withdraw",
            json={"order": "2377225624", "sum": 700},
            headers=headers,
        )
        assert withdraw.status_code == 200

        await assert_balance(
            file_session_factory, user_id, Decimal("29.98"), withdrawn=Decimal("700.00")
        )
        withdrawals = await live_client.get("/api/user/withdrawals", headers=headers)
        assert [(w["order"], w["sum"]) for w in withdrawals.json()] == [("2377225624", 700)]

    @pytest.mark.asyncio
    async def test_rejected_order_leaves_balance_alone(
        self, live_client, live_supervisor, accrual_stub, file_session_factory
    ):
        accrual_stub.script("79927398713", accrual_json("79927398713", "INVALID"))
        headers = await register(live_client, "bob")
        user_id = await _user_id(file_session_factory, "bob")

        response = await live_client.post(
            "/api/user/orders", content="79927398713", headers=headers,
        )
        assert response.status_code == 202
        await live_supervisor.wait_idle()

        await assert_order_status(file_session_factory, "79927398713", OrderStatus.INVALID)
        await assert_balance(file_session_factory, user_id, Decimal("0.00"))
        assert await count_entries(file_session_factory, "79927398713", LedgerEntryType.EARN) == 0

        orders = await live_client.get("/api/user/orders", headers=headers)
        assert "accrual" not in orders.json()[0]

    @pytest.mark.asyncio
    async def test_rate_limited_then_processed(
        self, live_client, live_supervisor, accrual_stub, fake_clock, file_session_factory
    ):
        accrual_stub.script(
            "4561261212345467",
            httpx.Response(429, headers={"Retry-After": "3"}),
            accrual_json("4561261212345467", "PROCESSED", 12.5),
        )
        headers = await register(live_client, "carol")

        await live_client.post("/api/user/orders", content="4561261212345467", headers=headers)
        await live_supervisor.wait_idle()

        assert fake_clock.sleeps == [1, 3]
        await assert_order_status(
            file_session_factory, "4561261212345467", OrderStatus.PROCESSED,
            accrual=Decimal("12.50"),
        )

    @pytest.mark.asyncio
    async def test_second_upload_does_not_start_second_worker(
        self, live_client, live_supervisor, accrual_stub
    ):
        accrual_stub.script("12345678903", accrual_json("12345678903", "PROCESSED", 1))
        headers = await register(live_client, "dave")

        first = await live_client.post("/api/user/orders", content="12345678903", headers=headers)
        second = await live_client.post("/api/user/orders", content="12345678903", headers=headers)
        await live_supervisor.wait_idle()

        assert first.status_code == 202
        assert second.status_code == 200
        assert accrual_stub.calls["12345678903"] == 1


@pytest.mark.scenario
class TestRecovery:

    @pytest.mark.asyncio
    async def test_sweep_finishes_orders_left_pending(
        self, live_client, live_supervisor, accrual_stub, file_session_factory
    ):
        accrual_stub.script("2377225624", accrual_json("2377225624", "PROCESSED", 40))
        await register(live_client, "erin")
        user_id = await _user_id(file_session_factory, "erin")
        # accepted before a restart, no worker ever ran for it
        async with file_session_factory() as session:
            result = await OrderService(session).submit_order(user_id, "2377225624")
        assert result == SubmitOrderResult.ACCEPTED

        assert await live_supervisor.sweep() == 1
        await live_supervisor.wait_idle()

        await assert_order_status(file_session_factory, "2377225624", OrderStatus.PROCESSED)
        await assert_balance(file_session_factory, user_id, Decimal("40.00"))
