"""
Test doubles shared by the unit and scenario tests.
"""
import asyncio
from decimal import Decimal
from typing import Callable

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

from app.db.models.account_balance import AccountBalance
from app.db.models.order import Order
from app.db.models.user import User

# Luhn-valid order numbers
VALID_ORDER_NUMBERS = ["12345678903", "79927398713", "4561261212345467", "2377225624"]


class RecordingSupervisor:
    """Stands in for the process supervisor, records which orders were started"""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.in_flight = 0

    def start(self, order_number: str) -> bool:
        self.started.append(order_number)
        return True


def accrual_responses(*responses: httpx.Response | Exception) -> Callable:
    """
    MockTransport handler returning the given responses in order.

    An exception instance is raised instead of returned. The last item
    repeats once the list is exhausted. Requested paths are collected on
    the handler as ``handler.paths``.
    """
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        handler.paths.append(request.url.path)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    handler.paths = []
    return handler


def accrual_json(number: str, status: str, accrual=None) -> httpx.Response:
    body = {"order": number, "status": status}
    if accrual is not None:
        body["accrual"] = accrual
    return httpx.Response(200, json=body)


class FakeClock:
    """Monotonic clock advanced only by the fake sleep"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        # let other tasks run, like a real sleep would
        await asyncio.sleep(0)


class FakeRedis:
    """In-memory Redis stand-in with the commands the lease and health checks use"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self.evals: list[tuple] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if absent) and EX (expiry in seconds)"""
        self._check()
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        self._check()
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def eval(self, script: str, numkeys: int, *keys_and_args: str) -> int:
        """Runs the lease release script: DEL the key only if it holds ARGV[1]"""
        self._check()
        self.evals.append(keys_and_args)
        key, token = keys_and_args[0], keys_and_args[numkeys]
        if self._store.get(key) != token:
            return 0
        self._store.pop(key, None)
        self._ttls.pop(key, None)
        return 1

    def ttl_of(self, key: str) -> int | None:
        return self._ttls.get(key)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


async def seed_user_with_orders(
    session_factory,
    login: str,
    orders: dict | None = None,
    balance: Decimal | str = "0.00",
) -> int:
    """
    Create a user with a balance row and orders ``{number: status}`` through
    the given session factory, for tests that run on the file-backed engine.
    """
    async with session_factory() as session:
        user = User(login=login, password_hash="pbkdf2_sha256$1$c2FsdA==$ZGlnZXN0")
        session.add(user)
        await session.flush()
        session.add(AccountBalance(
            user_id=user.id,
            balance=Decimal(str(balance)),
            total_spent=Decimal("0.00"),
        ))
        for number, status in (orders or {}).items():
            session.add(Order(number=number, user_id=user.id, status=status))
        await session.commit()
        return user.id
