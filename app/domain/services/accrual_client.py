"""
Accrual Client - thin httpx client for the external accrual service.

GET {ACCRUAL_SYSTEM_ADDRESS}/api/orders/{number}
- 200: {"order": "...", "status": "REGISTERED|PROCESSING|INVALID|PROCESSED", "accrual": 500}
- 204: order not registered yet
- 429: rate limited, optional Retry-After header (seconds)
- anything else: transient failure

No retries here: the reconciliation worker owns the polling schedule.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ServiceTimeoutError, TransientIOError
from app.core.logging import get_logger

logger = get_logger(__name__)


class AccrualStatus(str, enum.Enum):
    REGISTERED = "REGISTERED"
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    INVALID = "INVALID"
    PROCESSED = "PROCESSED"

    @property
    def is_terminal(self) -> bool:
        return self in (AccrualStatus.INVALID, AccrualStatus.PROCESSED)


class AccrualResultKind(str, enum.Enum):
    FOUND = "found"
    NOT_REGISTERED = "not_registered"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class AccrualResult:
    kind: AccrualResultKind
    status: Optional[AccrualStatus] = None
    accrual: Optional[Decimal] = None
    retry_after: Optional[float] = None  # seconds, RATE_LIMITED only

    @property
    def is_terminal(self) -> bool:
        return self.kind == AccrualResultKind.FOUND and self.status.is_terminal

    @classmethod
    def not_registered(cls) -> "AccrualResult":
        return cls(kind=AccrualResultKind.NOT_REGISTERED)

    @classmethod
    def rate_limited(cls, retry_after: Optional[float]) -> "AccrualResult":
        return cls(kind=AccrualResultKind.RATE_LIMITED, retry_after=retry_after)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds, None when absent or unparsable"""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0 or seconds != seconds:  # NaN
        return None
    return seconds


def _parse_accrual(raw) -> Optional[Decimal]:
    if raw is None:
        return None
    # bool is an int subclass, True is not an amount
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ValueError(f"accrual is not a number: {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"accrual is not a number: {raw!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"accrual out of range: {raw!r}")
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class AccrualClient:
    """
    Client for the accrual service.

    One instance is shared by all workers of a supervisor; httpx.AsyncClient
    pools connections and is safe to use from concurrent tasks.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (base_url or settings.ACCRUAL_SYSTEM_ADDRESS).rstrip("/")
        self._timeout = timeout or settings.ACCRUAL_REQUEST_TIMEOUT_SECONDS
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "AccrualClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_order_accrual(
        self,
        order_number: str,
        timeout: Optional[float] = None,
    ) -> AccrualResult:
        """
        Fetch the accrual verdict for one order.

        Args:
            order_number: order number as stored
            timeout: per-request timeout, clamped by the caller to its deadline

        Raises:
            TransientIOError: network error, timeout, undecodable body or
                unexpected status code
        """
        request_timeout = min(timeout, self._timeout) if timeout else self._timeout
        path = f"/api/orders/{order_number}"

        try:
            response = await self._client.get(path, timeout=request_timeout)
        except httpx.TimeoutException:
            raise ServiceTimeoutError(request_timeout)
        except httpx.RequestError as exc:
            raise TransientIOError(
                message=f"network error: {str(exc)}",
                details={"network_error": True, "order_number": order_number},
            )

        if response.status_code == 204:
            return AccrualResult.not_registered()

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "Accrual service rate limit",
                extra_data={"order_number": order_number, "retry_after": retry_after},
            )
            return AccrualResult.rate_limited(retry_after)

        if response.status_code != 200:
            raise TransientIOError.from_response("get_order_accrual", response)

        if not response.content.strip():
            return AccrualResult.not_registered()

        return self._parse_found(order_number, response)

    @staticmethod
    def _parse_found(order_number: str, response: httpx.Response) -> AccrualResult:
        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("response body is not an object")
            status = AccrualStatus(payload["status"])
            accrual = _parse_accrual(payload.get("accrual"))
        except (ValueError, KeyError, TypeError) as exc:
            # json.JSONDecodeError is a ValueError
            raise TransientIOError.from_response(
                "get_order_accrual",
                response,
                message=f"undecodable accrual response: {str(exc)}",
            )

        reported = payload.get("order")
        if reported is not None and str(reported) != order_number:
            logger.warning(
                "Accrual service answered for a different order",
                extra_data={"order_number": order_number, "reported": reported},
            )

        return AccrualResult(kind=AccrualResultKind.FOUND, status=status, accrual=accrual)
