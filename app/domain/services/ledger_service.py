"""
Ledger Service - atomic balance credit/debit with an append-only history

Every balance mutation follows the same pattern:
1. Validate the amount (before touching any state)
2. Lock the balance row (SELECT ... FOR UPDATE)
3. Guarded UPDATE ... RETURNING, so the new balance comes from the write itself
4. Insert the ledger entry (unique constraint prevents a second earn/spend
   for the same order number)
5. Commit, or leave the transaction open for the caller when commit=False
"""
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BalanceNotFoundError,
    DuplicateLedgerEntryError,
    InsufficientFundsError,
    InvalidAmountError,
)
from app.core.logging import get_logger
from app.core.validation import AmountValidator
from app.db.models.account_balance import AccountBalance
from app.db.models.ledger_transaction import LedgerEntryType, LedgerTransaction

logger = get_logger(__name__)


class LedgerService:
    """Service for account balances and the ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _validate_amount(amount: Decimal | float | int | str) -> Decimal:
        is_valid, _ = AmountValidator.validate(amount)
        if not is_valid:
            raise InvalidAmountError(amount)
        return AmountValidator.to_decimal(amount)

    async def _lock_balance_row(self, user_id: int) -> Decimal:
        """Lock the balance row for the rest of the transaction, return its balance"""
        result = await self.db.execute(
            select(AccountBalance.balance)
            .where(AccountBalance.user_id == user_id)
            .with_for_update()
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise BalanceNotFoundError(user_id)
        return balance

    async def _entry_exists(self, order_number: str, entry_type: LedgerEntryType) -> bool:
        result = await self.db.execute(
            select(LedgerTransaction.id).where(
                LedgerTransaction.order_number == order_number,
                LedgerTransaction.entry_type == entry_type,
            )
        )
        return result.scalar_one_or_none() is not None

    async def _append_entry(self, entry: LedgerTransaction, commit: bool) -> LedgerTransaction:
        self.db.add(entry)
        try:
            # flush even when the caller commits, so a duplicate surfaces here
            await self.db.flush()
            if commit:
                await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                "Duplicate ledger entry rejected by unique constraint",
                extra_data={
                    "order_number": entry.order_number,
                    "entry_type": entry.entry_type.value,
                },
            )
            raise DuplicateLedgerEntryError(entry.order_number, entry.entry_type.value)
        return entry

    async def get_balance(self, user_id: int) -> AccountBalance:
        """
        Current balance and total withdrawn.

        Raises:
            BalanceNotFoundError: the user has no balance row
        """
        result = await self.db.execute(
            select(AccountBalance)
            .where(AccountBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise BalanceNotFoundError(user_id)
        return balance

    async def credit(
        self,
        user_id: int,
        order_number: str,
        amount: Decimal | float | int | str,
        order_id: int | None = None,
        commit: bool = True,
    ) -> LedgerTransaction:
        """
        Credit accrual points for an order.

        Raises:
            InvalidAmountError: amount is not positive
            DuplicateLedgerEntryError: the order was already credited
            BalanceNotFoundError: the user has no balance row
        """
        amount_decimal = self._validate_amount(amount)

        if await self._entry_exists(order_number, LedgerEntryType.EARN):
            if commit:
                await self.db.rollback()
            raise DuplicateLedgerEntryError(order_number, LedgerEntryType.EARN.value)

        await self._lock_balance_row(user_id)

        result = await self.db.execute(
            update(AccountBalance)
            .where(AccountBalance.user_id == user_id)
            .values(balance=AccountBalance.balance + amount_decimal)
            .returning(AccountBalance.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one()

        entry = LedgerTransaction(
            user_id=user_id,
            order_id=order_id,
            order_number=order_number,
            entry_type=LedgerEntryType.EARN,
            amount=amount_decimal,
            balance_after=new_balance,
        )
        await self._append_entry(entry, commit)

        logger.info(
            "Balance credited",
            extra_data={
                "user_id": user_id,
                "order_number": order_number,
                "amount": str(amount_decimal),
                "balance_after": str(new_balance),
            },
        )
        return entry

    async def debit(
        self,
        user_id: int,
        order_number: str,
        amount: Decimal | float | int | str,
        commit: bool = True,
    ) -> LedgerTransaction:
        """
        Withdraw points against an order number.

        The UPDATE only matches while balance >= amount, so two concurrent
        debits can never drive the balance below zero even on databases
        without row locks.

        Raises:
            InvalidAmountError: amount is not positive
            InsufficientFundsError: amount exceeds the current balance
            DuplicateLedgerEntryError: a withdrawal with this number exists
            BalanceNotFoundError: the user has no balance row
        """
        amount_decimal = self._validate_amount(amount)

        if await self._entry_exists(order_number, LedgerEntryType.SPEND):
            if commit:
                await self.db.rollback()
            raise DuplicateLedgerEntryError(order_number, LedgerEntryType.SPEND.value)

        await self._lock_balance_row(user_id)

        result = await self.db.execute(
            update(AccountBalance)
            .where(
                AccountBalance.user_id == user_id,
                AccountBalance.balance >= amount_decimal,
            )
            .values(
                balance=AccountBalance.balance - amount_decimal,
                total_spent=AccountBalance.total_spent + amount_decimal,
            )
            .returning(AccountBalance.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()

        if new_balance is None:
            current = await self._lock_balance_row(user_id)
            if commit:
                await self.db.rollback()
            logger.warning(
                "Withdrawal rejected: insufficient funds",
                extra_data={
                    "user_id": user_id,
                    "order_number": order_number,
                    "balance": str(current),
                    "amount": str(amount_decimal),
                },
            )
            raise InsufficientFundsError(user_id, current, amount_decimal)

        entry = LedgerTransaction(
            user_id=user_id,
            order_number=order_number,
            entry_type=LedgerEntryType.SPEND,
            amount=-amount_decimal,
            balance_after=new_balance,
        )
        await self._append_entry(entry, commit)

        logger.info(
            "Balance debited",
            extra_data={
                "user_id": user_id,
                "order_number": order_number,
                "amount": str(amount_decimal),
                "balance_after": str(new_balance),
            },
        )
        return entry

    async def get_withdrawals(self, user_id: int) -> list[LedgerTransaction]:
        """Spend history, newest first"""
        result = await self.db.execute(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.user_id == user_id,
                LedgerTransaction.entry_type == LedgerEntryType.SPEND,
            )
            .order_by(LedgerTransaction.processed_at.desc(), LedgerTransaction.id.desc())
        )
        return list(result.scalars().all())

    async def get_ledger_history(self, user_id: int, limit: int = 50) -> list[LedgerTransaction]:
        """All entries for a user, newest first"""
        result = await self.db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.processed_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
