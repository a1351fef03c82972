"""
Account Balance Model - current points per user
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base


class AccountBalance(Base):
    """Current balance and lifetime withdrawals, one row per user"""

    __tablename__ = "account_balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_spent = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="balance")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_account_balances_balance_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_account_balances_total_spent_non_negative"),
    )
