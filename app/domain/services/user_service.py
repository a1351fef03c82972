"""
User Service - registration and authentication
"""
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import hash_password, verify_password
from app.core.exceptions import (
    InvalidCredentialsError,
    UserAlreadyExistsError,
    ValidationException,
)
from app.core.logging import get_logger
from app.core.validation import LoginValidator
from app.db.models.account_balance import AccountBalance
from app.db.models.user import User

logger = get_logger(__name__)


class UserService:
    """Service for loyalty program users"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_login(self, login: str) -> User | None:
        result = await self.db.execute(select(User).where(User.login == login))
        return result.scalar_one_or_none()

    async def register(self, login: str, password: str) -> User:
        """
        Create a user together with a zero balance, in one transaction.

        Raises:
            ValidationException: malformed login or password
            UserAlreadyExistsError: login is taken
        """
        is_valid, error = LoginValidator.validate_login(login)
        if not is_valid:
            raise ValidationException(error, field="login")
        is_valid, error = LoginValidator.validate_password(password)
        if not is_valid:
            raise ValidationException(error, field="password")

        if await self.get_by_login(login) is not None:
            raise UserAlreadyExistsError(login)

        user = User(login=login, password_hash=hash_password(password))
        self.db.add(user)
        try:
            await self.db.flush()  # Get user ID
            self.db.add(AccountBalance(
                user_id=user.id,
                balance=Decimal("0.00"),
                total_spent=Decimal("0.00"),
            ))
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Concurrent registration for the same login", extra_data={"login": login})
            raise UserAlreadyExistsError(login)

        await self.db.refresh(user)
        logger.info("User registered", extra_data={"user_id": user.id})
        return user

    async def authenticate(self, login: str, password: str) -> User:
        """
        Raises:
            InvalidCredentialsError: unknown login or wrong password
        """
        user = await self.get_by_login(login)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Authentication failed", extra_data={"login": login})
            raise InvalidCredentialsError()
        return user
