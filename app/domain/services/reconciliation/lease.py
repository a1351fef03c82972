"""
Order Lease - cross-process "one worker per order" hint in Redis.

SET accrual_lease:{number} <token> NX EX <ttl>

The lease only saves duplicate polling between processes (API replicas and
the Celery sweep). Exactly-once crediting is enforced by the database guard
in OrderService.apply_accrual_result, so when Redis is unavailable the worker
proceeds without a lease.
"""
from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError

from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

# delete only while the key still carries our token, in one round trip
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class LeaseStatus(str, enum.Enum):
    ACQUIRED = "acquired"
    HELD_ELSEWHERE = "held_elsewhere"
    UNAVAILABLE = "unavailable"  # Redis down, proceed without a lease


@dataclass(frozen=True)
class LeaseHandle:
    order_number: str
    status: LeaseStatus
    token: Optional[str] = None


class OrderLease:
    """Acquire/release leases for order numbers"""

    KEY_PREFIX = "accrual_lease"

    def __init__(self, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl_seconds = int(ttl_seconds)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def key(self, order_number: str) -> str:
        return f"{self.KEY_PREFIX}:{order_number}"

    async def acquire(self, order_number: str) -> LeaseHandle:
        token = secrets.token_hex(8)
        try:
            redis = await get_redis()
            # atomic: SET only if the key does not exist (NX) with expiry (EX)
            result = await redis.set(
                self.key(order_number), token, nx=True, ex=self._ttl_seconds
            )
        except (RedisError, OSError) as e:
            logger.warning(
                "Lease store unavailable, continuing without a lease",
                extra_data={"order_number": order_number, "error": str(e)},
            )
            return LeaseHandle(order_number, LeaseStatus.UNAVAILABLE)

        if not result:
            logger.info(
                "Order lease held by another worker",
                extra_data={"order_number": order_number},
            )
            return LeaseHandle(order_number, LeaseStatus.HELD_ELSEWHERE)

        return LeaseHandle(order_number, LeaseStatus.ACQUIRED, token)

    async def release(self, handle: LeaseHandle) -> None:
        """Delete the key if it still carries our token"""
        if handle.status != LeaseStatus.ACQUIRED:
            return
        key = self.key(handle.order_number)
        try:
            redis = await get_redis()
            # an expired lease may have been re-acquired by someone else
            await redis.eval(_RELEASE_SCRIPT, 1, key, handle.token)
        except (RedisError, OSError) as e:
            # the key expires on its own after ttl_seconds
            logger.warning(
                "Failed to release order lease",
                extra_data={"order_number": handle.order_number, "error": str(e)},
            )
