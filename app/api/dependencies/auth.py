"""
FastAPI dependencies for authenticated user routes

Usage:
    @router.get("/balance")
    async def balance(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_token
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.user import User
from app.domain.services.reconciliation import ReconciliationSupervisor

logger = get_logger(__name__)

# auto_error=False so a missing header is a 401 like a bad token
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Verify the JWT and load the user it was issued for.

    Raises 401 when the token is missing, invalid or expired, or when the
    user no longer exists.
    """
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise _unauthorized("Invalid or expired token")

    user = await db.get(User, token_data.user_id)
    if user is None:
        logger.warning(
            "Token issued for a missing user",
            extra_data={"user_id": token_data.user_id},
        )
        raise _unauthorized("Invalid or expired token")
    return user


def get_supervisor(request: Request) -> Optional[ReconciliationSupervisor]:
    """The process-wide supervisor created on startup, None before startup"""
    return getattr(request.app.state, "supervisor", None)
