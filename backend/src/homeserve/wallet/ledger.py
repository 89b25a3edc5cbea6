"""Wallet ledger for HomeServe users."""

import json
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy.orm import Session

from homeserve.auth.models import UserAccount, WalletTransaction
from homeserve.logging_config import get_logger
from homeserve.referral.exceptions import UserNotFoundError
from homeserve.storage.db import Database, db

logger = get_logger(__name__)


class InsufficientFundsError(Exception):
    """Raised when a debit would take the wallet below zero."""

    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient wallet balance: required {required}, available {available}")


class WalletService:
    """Service for wallet balances.

    ``credit`` and ``debit`` are the only code paths that change
    ``UserAccount.wallet_balance``; every change writes a ledger line.
    Both accept an open session so callers can fold the balance change
    into a larger transaction.
    """

    def __init__(self, database: Database | None = None):
        """Initialize wallet service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    @contextmanager
    def _scope(self, session: Session | None) -> Generator[Session, None, None]:
        if session is not None:
            yield session
        else:
            with self.db.session() as own_session:
                yield own_session

    def get_balance(self, user_id: str) -> float:
        """Get user's wallet balance.

        Args:
            user_id: User ID

        Returns:
            Wallet balance (0.0 for unknown users)
        """
        with self.db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                return 0.0
            return user.wallet_balance

    def credit(
        self,
        user_id: str,
        amount: float,
        operation: str,
        reference_id: str | None = None,
        description: str | None = None,
        metadata: dict | None = None,
        session: Session | None = None,
    ) -> WalletTransaction:
        """Add money to a wallet.

        Args:
            user_id: User ID
            amount: Amount to add (positive)
            operation: Operation type (referral_signup_bonus, refund, ...)
            reference_id: Related referral or booking id
            description: Optional description
            metadata: Optional metadata
            session: Open session to join; a new transaction is used otherwise

        Returns:
            Wallet transaction record

        Raises:
            ValueError: If amount is not positive
            UserNotFoundError: If the user has no account
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        with self._scope(session) as s:
            # SELECT FOR UPDATE so concurrent credits add to the latest balance
            user = s.query(UserAccount).filter(
                UserAccount.id == user_id
            ).with_for_update().first()

            if not user:
                raise UserNotFoundError(user_id)

            new_balance = (user.wallet_balance or 0.0) + amount
            user.wallet_balance = new_balance

            transaction = WalletTransaction(
                user_id=user_id,
                amount=amount,
                balance_after=new_balance,
                operation=operation,
                reference_id=reference_id,
                description=description,
                metadata_json=json.dumps(metadata) if metadata else None,
            )
            s.add(transaction)
            s.flush()

            self.logger.info(
                "wallet_credited",
                user_id=user_id,
                amount=amount,
                operation=operation,
                new_balance=new_balance,
            )

            return transaction

    def debit(
        self,
        user_id: str,
        amount: float,
        operation: str,
        reference_id: str | None = None,
        description: str | None = None,
        session: Session | None = None,
    ) -> WalletTransaction:
        """Take money out of a wallet.

        Args:
            user_id: User ID
            amount: Amount to take (positive)
            operation: Operation type (booking_payment, withdrawal, ...)
            reference_id: Related booking id
            description: Optional description
            session: Open session to join; a new transaction is used otherwise

        Returns:
            Wallet transaction record

        Raises:
            ValueError: If amount is not positive
            UserNotFoundError: If the user has no account
            InsufficientFundsError: If the balance is too low
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        with self._scope(session) as s:
            # SELECT FOR UPDATE to serialize concurrent debits
            user = s.query(UserAccount).filter(
                UserAccount.id == user_id
            ).with_for_update().first()

            if not user:
                raise UserNotFoundError(user_id)

            if user.wallet_balance < amount:
                raise InsufficientFundsError(amount, user.wallet_balance)

            new_balance = user.wallet_balance - amount
            user.wallet_balance = new_balance

            transaction = WalletTransaction(
                user_id=user_id,
                amount=-amount,
                balance_after=new_balance,
                operation=operation,
                reference_id=reference_id,
                description=description,
            )
            s.add(transaction)
            s.flush()

            self.logger.info(
                "wallet_debited",
                user_id=user_id,
                amount=amount,
                operation=operation,
                new_balance=new_balance,
            )

            return transaction

    def get_history(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WalletTransaction]:
        """Get user's ledger lines, newest first.

        Args:
            user_id: User ID
            limit: Max records
            offset: Offset for pagination

        Returns:
            List of transactions
        """
        with self.db.session() as session:
            return session.query(WalletTransaction).filter(
                WalletTransaction.user_id == user_id
            ).order_by(
                WalletTransaction.created_at.desc(),
                WalletTransaction.id.desc(),
            ).offset(offset).limit(limit).all()

    def get_summary(self, user_id: str) -> dict[str, Any]:
        """Totals of credits and debits for a user.

        Args:
            user_id: User ID

        Returns:
            Summary dict (empty for unknown users)
        """
        from sqlalchemy import func

        with self.db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                return {}

            total_credited = session.query(
                func.sum(WalletTransaction.amount)
            ).filter(
                WalletTransaction.user_id == user_id,
                WalletTransaction.amount > 0,
            ).scalar() or 0

            total_debited = session.query(
                func.sum(WalletTransaction.amount)
            ).filter(
                WalletTransaction.user_id == user_id,
                WalletTransaction.amount < 0,
            ).scalar() or 0

            return {
                "balance": user.wallet_balance,
                "total_credited": float(total_credited),
                "total_debited": abs(float(total_debited)),
            }
