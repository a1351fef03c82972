"""
Domain Services
"""
from app.domain.services.ledger_service import LedgerService
from app.domain.services.order_service import OrderService, SubmitOrderResult
from app.domain.services.user_service import UserService
from app.domain.services.accrual_client import AccrualClient, AccrualResult

__all__ = [
    "LedgerService",
    "OrderService",
    "SubmitOrderResult",
    "UserService",
    "AccrualClient",
    "AccrualResult",
]
