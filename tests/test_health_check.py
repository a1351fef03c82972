"""
Tests for the health endpoints - liveness and readiness
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.domain.services import health_service
from app.main import app
from tests.support import RecordingSupervisor

_SERVICE = "app.domain.services.health_service"


def _patch_checks(db: str = "ok", redis: str = "ok", celery: str = "ok"):
    """Patch every dependency probe with a fixed answer"""
    return (
        patch(f"{_SERVICE}._check_db", new_callable=AsyncMock, return_value=db),
        patch(f"{_SERVICE}._check_redis", new_callable=AsyncMock, return_value=redis),
        patch(f"{_SERVICE}._check_celery", new_callable=AsyncMock, return_value=celery),
    )


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_always_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_all_dependencies_up(self, test_client: httpx.AsyncClient) -> None:
        db, redis, celery = _patch_checks()
        with db, redis, celery:
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "db": "ok", "redis": "ok", "celery": "ok"}

    @pytest.mark.unit
    @pytest.mark.parametrize("down", ["db", "redis", "celery"])
    async def test_one_dependency_down_is_degraded(
        self, test_client: httpx.AsyncClient, down: str
    ) -> None:
        answers = {"db": "ok", "redis": "ok", "celery": "ok", down: f"error: {down}_unavailable"}
        db, redis, celery = _patch_checks(**answers)
        with db, redis, celery:
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data[down] == f"error: {down}_unavailable"

    @pytest.mark.unit
    async def test_reports_workers_in_flight(self, test_client: httpx.AsyncClient) -> None:
        supervisor = RecordingSupervisor()
        supervisor.in_flight = 4
        app.state.supervisor = supervisor
        try:
            db, redis, celery = _patch_checks()
            with db, redis, celery:
                response = await test_client.get("/health/ready")
        finally:
            del app.state.supervisor

        assert response.json()["reconciliation_in_flight"] == 4


class TestDependencyChecks:

    @pytest.mark.unit
    async def test_redis_check_uses_lease_store(self, fake_redis) -> None:
        assert await health_service._check_redis() == "ok"

        fake_redis.fail = True
        assert await health_service._check_redis() == "error: redis_unavailable"

    @pytest.mark.unit
    async def test_db_check_hides_error_details(self) -> None:
        class BrokenSession:
            async def __aenter__(self):
                raise ConnectionRefusedError("10.0.0.5:5432 refused")

            async def __aexit__(self, *exc):
                return False

        with patch(f"{_SERVICE}.AsyncSessionLocal", return_value=BrokenSession()):
            result = await health_service._check_db()

        assert result == "error: db_unavailable"
        assert "10.0.0.5" not in result

    @pytest.mark.unit
    async def test_celery_check_broker_down(self) -> None:
        broker = AsyncMock()
        broker.ping.side_effect = ConnectionError("broker down")

        with patch(f"{_SERVICE}.aioredis.from_url", return_value=broker):
            result = await health_service._check_celery()

        assert result == "error: celery_unavailable"
        broker.aclose.assert_awaited_once()
