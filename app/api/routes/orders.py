"""
Order upload and history routes
"""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_user, get_supervisor
from app.core.exceptions import ConflictError, ErrorCode, InvalidOrderNumberError, UserNotFoundError
from app.core.logging import get_logger
from app.core.middleware import GzipRoute
from app.db.database import get_db
from app.db.models.user import User
from app.domain.services.order_service import OrderService, SubmitOrderResult
from app.domain.services.reconciliation import ReconciliationSupervisor

logger = get_logger(__name__)

router = APIRouter(route_class=GzipRoute)


class OrderResponse(BaseModel):
    number: str
    status: str
    accrual: Optional[float] = None
    uploaded_at: datetime

    @field_validator("uploaded_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        """Stored timestamps are naive UTC"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    class Config:
        from_attributes = True


@router.post(
    "/orders",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload an order number",
    description=(
        "Body is the order number as text/plain. "
        "202 accepted for processing, 200 already uploaded by this user, "
        "409 uploaded by another user, 422 invalid number."
    ),
    responses={
        200: {"description": "Already uploaded by this user"},
        409: {"description": "Uploaded by another user"},
        422: {"description": "Invalid order number"},
    },
)
async def upload_order(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    supervisor: Optional[ReconciliationSupervisor] = Depends(get_supervisor),
):
    raw = (await request.body()).decode("utf-8", errors="replace").strip()
    if not raw:
        raise InvalidOrderNumberError(raw)

    service = OrderService(db)
    result = await service.submit_order(user.id, raw)

    if result == SubmitOrderResult.OWNED_BY_OTHER_USER:
        raise ConflictError(
            "Order number already uploaded by another user",
            error_code=ErrorCode.ORDER_OWNED_BY_ANOTHER_USER,
            details={"order_number": raw},
        )
    if result == SubmitOrderResult.USER_NOT_FOUND:
        raise UserNotFoundError(user.id)
    if result == SubmitOrderResult.ALREADY_SUBMITTED_BY_SAME_USER:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"order": raw, "result": result.value},
        )

    # Reconciliation runs outside the request; a missed start is recovered by the sweep
    if supervisor is None:
        logger.warning(
            "No reconciliation supervisor, order left for the recovery sweep",
            extra_data={"order_number": raw},
        )
    else:
        supervisor.start(raw)

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"order": raw, "result": result.value},
    )


@router.get(
    "/orders",
    response_model=List[OrderResponse],
    response_model_exclude_none=True,
    summary="List uploaded orders",
    description="Newest first. 204 when the user has no orders.",
    responses={204: {"description": "No orders"}},
)
async def list_orders(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = OrderService(db)
    orders = await service.get_order_history(user.id)
    if not orders:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [
        OrderResponse(
            number=order.number,
            status=order.status.value,
            accrual=float(order.accrual) if order.accrual is not None else None,
            uploaded_at=order.uploaded_at,
        )
        for order in orders
    ]
