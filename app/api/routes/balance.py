"""
Balance, withdrawal and withdrawal history routes
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_user
from app.core.exceptions import InvalidOrderNumberError
from app.core.middleware import GzipRoute
from app.core.validation import OrderNumberValidator
from app.db.database import get_db
from app.db.models.user import User
from app.domain.services.ledger_service import LedgerService

router = APIRouter(route_class=GzipRoute)


class BalanceResponse(BaseModel):
    current: float
    withdrawn: float


class WithdrawRequest(BaseModel):
    order: str
    sum: Decimal = Field(..., description="Points to withdraw, must be positive")


class WithdrawalResponse(BaseModel):
    order: str
    sum: float
    processed_at: datetime

    @field_validator("processed_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Current balance",
    description="Points available and total points withdrawn.",
)
async def get_balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = LedgerService(db)
    balance = await service.get_balance(user.id)
    return BalanceResponse(
        current=float(balance.balance),
        withdrawn=float(balance.total_spent),
    )


@router.post(
    "/balance/withdraw",
    summary="Withdraw points against a new order number",
    description=(
        "402 insufficient funds, 422 invalid order number, "
        "400 non-positive sum, 409 number already used for a withdrawal."
    ),
    responses={
        402: {"description": "Insufficient funds"},
        409: {"description": "Duplicate withdrawal number"},
        422: {"description": "Invalid order number"},
    },
)
async def withdraw(
    body: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not OrderNumberValidator.validate(body.order):
        raise InvalidOrderNumberError(body.order)
    number = OrderNumberValidator.normalize(body.order)

    service = LedgerService(db)
    entry = await service.debit(user.id, number, body.sum)
    return {"order": number, "sum": float(-entry.amount), "balance": float(entry.balance_after)}


@router.get(
    "/withdrawals",
    response_model=List[WithdrawalResponse],
    summary="Withdrawal history",
    description="Newest first. 204 when there are no withdrawals.",
    responses={204: {"description": "No withdrawals"}},
)
async def list_withdrawals(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = LedgerService(db)
    withdrawals = await service.get_withdrawals(user.id)
    if not withdrawals:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [
        WithdrawalResponse(
            order=entry.order_number,
            sum=float(-entry.amount),
            processed_at=entry.processed_at,
        )
        for entry in withdrawals
    ]
