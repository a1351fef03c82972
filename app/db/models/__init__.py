"""
Database Models
"""
from app.db.models.user import User
from app.db.models.order import Order, OrderStatus
from app.db.models.account_balance import AccountBalance
from app.db.models.ledger_transaction import LedgerTransaction, LedgerEntryType

__all__ = [
    "User",
    "Order",
    "OrderStatus",
    "AccountBalance",
    "LedgerTransaction",
    "LedgerEntryType",
]
