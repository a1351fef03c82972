"""
Order Model - loyalty orders awaiting or holding an accrual verdict
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from app.db.database import Base


class OrderStatus(str, enum.Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    INVALID = "INVALID"
    PROCESSED = "PROCESSED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.INVALID, OrderStatus.PROCESSED})
PENDING_STATUSES = (OrderStatus.NEW, OrderStatus.PROCESSING)


class Order(Base):
    """
    One submitted order number.

    Created as NEW on submission. Only the reconciliation write path
    changes status and accrual afterwards; INVALID and PROCESSED are final.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    # Globally unique: the same number cannot belong to two users
    number = Column(String(64), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=OrderStatus.NEW,
        nullable=False,
    )
    accrual = Column(Numeric(12, 2), nullable=True)  # set only when PROCESSED

    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")

    __table_args__ = (
        # recovery sweep: non-terminal orders, oldest first
        Index("ix_orders_status_uploaded_at", "status", "uploaded_at"),
    )
