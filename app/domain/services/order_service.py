"""
Order Service - submission, history and the terminal accrual write
"""
import enum
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidOrderNumberError,
    OrderAlreadyFinalizedError,
    OrderNotFoundError,
)
from app.core.logging import get_logger
from app.core.validation import OrderNumberValidator
from app.db.models.order import Order, OrderStatus, PENDING_STATUSES
from app.db.models.user import User
from app.domain.services.ledger_service import LedgerService

logger = get_logger(__name__)


class SubmitOrderResult(str, enum.Enum):
    ACCEPTED = "accepted"
    ALREADY_SUBMITTED_BY_SAME_USER = "already_submitted_by_same_user"
    OWNED_BY_OTHER_USER = "owned_by_other_user"
    USER_NOT_FOUND = "user_not_found"


class OrderService:
    """Service for managing loyalty orders"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _owner_of(self, order_number: str) -> Optional[int]:
        result = await self.db.execute(
            select(Order.user_id).where(Order.number == order_number)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _ownership_result(owner_id: int, user_id: int) -> SubmitOrderResult:
        if owner_id == user_id:
            return SubmitOrderResult.ALREADY_SUBMITTED_BY_SAME_USER
        return SubmitOrderResult.OWNED_BY_OTHER_USER

    async def submit_order(self, user_id: int, order_number: str) -> SubmitOrderResult:
        """
        Register an order number for a user.

        Only ACCEPTED creates a row (status NEW); the caller starts
        reconciliation for it. Ownership is decided by the unique order
        number, so two users racing on one number get exactly one ACCEPTED.

        Raises:
            InvalidOrderNumberError: not a Luhn-valid numeral string
        """
        if not OrderNumberValidator.validate(order_number):
            raise InvalidOrderNumberError(order_number)
        number = OrderNumberValidator.normalize(order_number)

        user = await self.db.get(User, user_id)
        if user is None:
            return SubmitOrderResult.USER_NOT_FOUND

        owner_id = await self._owner_of(number)
        if owner_id is not None:
            return self._ownership_result(owner_id, user_id)

        self.db.add(Order(number=number, user_id=user_id, status=OrderStatus.NEW))
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request inserted the same number between the check and the insert
            await self.db.rollback()
            owner_id = await self._owner_of(number)
            if owner_id is None:
                raise
            return self._ownership_result(owner_id, user_id)

        logger.info(
            "Order accepted",
            extra_data={"user_id": user_id, "order_number": number},
        )
        return SubmitOrderResult.ACCEPTED

    async def get_order(self, order_number: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.number == order_number)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order_history(self, user_id: int) -> List[Order]:
        """All orders of a user, newest first"""
        result = await self.db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.uploaded_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def list_pending_orders(
        self,
        older_than_seconds: float = 0,
        limit: int = 100,
    ) -> List[str]:
        """Numbers of NEW/PROCESSING orders uploaded before the grace period, oldest first"""
        cutoff = datetime.utcnow() - timedelta(seconds=older_than_seconds)
        result = await self.db.execute(
            select(Order.number)
            .where(
                Order.status.in_(PENDING_STATUSES),
                Order.uploaded_at <= cutoff,
            )
            .order_by(Order.uploaded_at.asc(), Order.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def apply_accrual_result(
        self,
        order_number: str,
        status: OrderStatus,
        accrual: Optional[Decimal] = None,
    ) -> Order:
        """
        Persist a terminal verdict, crediting the owner in the same transaction.

        Atomic operation:
        1. Lock the order row (SELECT ... FOR UPDATE)
        2. Guarded UPDATE ... WHERE status IN (NEW, PROCESSING)
        3. PROCESSED with accrual > 0: credit balance + earn entry
        4. Commit, or roll back everything

        Raises:
            OrderNotFoundError: no such order
            OrderAlreadyFinalizedError: another writer finalized it first
            DuplicateLedgerEntryError: an earn already exists for the order
        """
        if not status.is_terminal:
            raise ValueError(f"Only terminal statuses are persisted, got {status.value}")

        if status != OrderStatus.PROCESSED:
            accrual = None

        try:
            locked = await self.db.execute(
                select(Order.id, Order.status)
                .where(Order.number == order_number)
                .with_for_update()
            )
            row = locked.one_or_none()
            if row is None:
                raise OrderNotFoundError(order_number)

            result = await self.db.execute(
                update(Order)
                .where(
                    Order.number == order_number,
                    Order.status.in_(PENDING_STATUSES),
                )
                .values(status=status, accrual=accrual, updated_at=datetime.utcnow())
                .returning(Order.id, Order.user_id)
                .execution_options(synchronize_session=False)
            )
            updated = result.one_or_none()
            if updated is None:
                current = await self.db.execute(
                    select(Order.status).where(Order.number == order_number)
                )
                current_status = current.scalar_one()
                raise OrderAlreadyFinalizedError(order_number, OrderStatus(current_status).value)

            order_id, user_id = updated
            if accrual is not None and accrual > 0:
                ledger = LedgerService(self.db)
                await ledger.credit(
                    user_id=user_id,
                    order_number=order_number,
                    amount=accrual,
                    order_id=order_id,
                    commit=False,
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Order finalized",
            extra_data={
                "order_number": order_number,
                "status": status.value,
                "accrual": str(accrual) if accrual is not None else None,
            },
        )
        return await self.get_order(order_number)
