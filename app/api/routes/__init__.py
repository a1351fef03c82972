"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.auth import router as auth_router
from app.api.routes.orders import router as orders_router
from app.api.routes.balance import router as balance_router

router = APIRouter()

router.include_router(auth_router, prefix="/user", tags=["Auth"])
router.include_router(orders_router, prefix="/user", tags=["Orders"])
router.include_router(balance_router, prefix="/user", tags=["Balance"])
