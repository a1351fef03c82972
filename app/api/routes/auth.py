"""
Registration and login routes
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import create_access_token
from app.core.middleware import GzipRoute
from app.db.database import get_db
from app.db.models.user import User
from app.domain.services.user_service import UserService

router = APIRouter(route_class=GzipRoute)


class Credentials(BaseModel):
    login: str
    password: str


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"


def _token_response(user: User) -> JSONResponse:
    """Token in the body and in the Authorization header"""
    token = create_access_token(user.id, user.login)
    return JSONResponse(
        status_code=200,
        content=TokenResponse(token=token).model_dump(),
        headers={"Authorization": f"Bearer {token}"},
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    summary="Register a new user",
    description=(
        "Creates the user with a zero balance and logs them in. "
        "409 when the login is taken, 400 for a malformed body."
    ),
    responses={409: {"description": "Login already taken"}},
)
async def register(
    body: Credentials,
    db: AsyncSession = Depends(get_db),
):
    service = UserService(db)
    user = await service.register(body.login, body.password)
    return _token_response(user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in",
    description="Returns a bearer token, 401 for an unknown login or wrong password.",
    responses={401: {"description": "Invalid credentials"}},
)
async def login(
    body: Credentials,
    db: AsyncSession = Depends(get_db),
):
    service = UserService(db)
    user = await service.authenticate(body.login, body.password)
    return _token_response(user)
