"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite) and a file-backed engine for
  tests that need truly concurrent connections
- A fake Redis and a fake clock for reconciliation workers
- An httpx client against the FastAPI app
- Test data factories
"""
# JWT_SECRET_KEY must be set before importing app, the settings validator
# refuses an empty key when DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

from decimal import Decimal
from typing import AsyncGenerator, Callable
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.dependencies.auth import get_supervisor
from app.core.config import settings
from app.db.database import Base, get_db
from app.db.models.account_balance import AccountBalance
from app.db.models.order import Order, OrderStatus
from app.db.models.user import User
from app.domain.services.accrual_client import AccrualClient
from app.main import app
from tests.support import FakeClock, FakeRedis, RecordingSupervisor


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker:
    """Session factory for workers, bound to the same in-memory database as db_session"""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def file_engine(tmp_path):
    """
    File-backed SQLite engine with a real connection pool.

    Writers on separate connections serialize on the database lock (busy
    timeout), which is what concurrency tests need; the in-memory
    StaticPool engine shares a single connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}",
        connect_args={"timeout": 30},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine) -> async_sessionmaker:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
def recording_supervisor() -> RecordingSupervisor:
    return RecordingSupervisor()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, recording_supervisor: RecordingSupervisor):
    """Create test client with database and supervisor overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_supervisor] = lambda: recording_supervisor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users, with a balance row by default"""
    counter = {"n": 0}

    async def _create_user(
        login: str | None = None,
        password_hash: str = "pbkdf2_sha256$1$c2FsdA==$ZGlnZXN0",
        balance: Decimal | str | int = "0.00",
        with_balance: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(login=login or f"user{counter['n']}", password_hash=password_hash)
        db_session.add(user)
        await db_session.flush()
        if with_balance:
            db_session.add(AccountBalance(
                user_id=user.id,
                balance=Decimal(str(balance)),
                total_spent=Decimal("0.00"),
            ))
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating orders directly, bypassing submission"""
    async def _create_order(
        user_id: int,
        number: str = "12345678903",
        status: OrderStatus = OrderStatus.NEW,
        accrual: Decimal | None = None,
    ) -> Order:
        order = Order(number=number, user_id=user_id, status=status, accrual=accrual)
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


# ============================================================================
# Accrual service
# ============================================================================


@pytest.fixture
async def accrual_client_factory():
    """Builds AccrualClients over a MockTransport, closing them after the test"""
    clients: list[AccrualClient] = []

    def _build(handler: Callable) -> AccrualClient:
        client = AccrualClient(
            base_url="http://accrual.test",
            timeout=5.0,
            transport=httpx.MockTransport(handler),
        )
        clients.append(client)
        return client

    yield _build

    for client in clients:
        await client.aclose()


# ============================================================================
# Fake clock
# ============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Redis
# ============================================================================


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with a FakeRedis in every module that imported it"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.reconciliation.lease.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Settings
# ============================================================================

_TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-do-not-use-in-production"


@pytest.fixture(autouse=True)
def set_jwt_secret():
    """JWT settings for token tests, and cheap password hashing"""
    with patch.object(settings, "JWT_SECRET_KEY", _TEST_JWT_SECRET), \
         patch.object(settings, "JWT_ALGORITHM", "HS256"), \
         patch.object(settings, "JWT_ACCESS_TOKEN_EXPIRE_MINUTES", 60), \
         patch.object(settings, "PASSWORD_HASH_ITERATIONS", 1000):
        yield
