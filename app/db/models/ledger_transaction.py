"""
Ledger Transaction Model - Immutable Transaction History
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey,
    Enum as SQLEnum, UniqueConstraint, Index,
)

from app.db.database import Base


class LedgerEntryType(str, enum.Enum):
    EARN = "earn"
    SPEND = "spend"


class LedgerTransaction(Base):
    """Append-only ledger preventing double credit and duplicate withdrawals"""

    __tablename__ = "ledger_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)  # earn only
    order_number = Column(String(64), nullable=False)

    entry_type = Column(
        SQLEnum(
            LedgerEntryType,
            name="ledger_entry_type",
            values_callable=lambda x: [e.value for e in x]  # stores 'earn', not 'EARN'
        ),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)  # Positive for earn, negative for spend
    balance_after = Column(Numeric(12, 2), nullable=False)

    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # One earn per order, one spend per withdrawal number
        UniqueConstraint("order_number", "entry_type", name="uq_ledger_order_number_entry_type"),
        Index("ix_ledger_user_type_processed", "user_id", "entry_type", "processed_at"),
    )
