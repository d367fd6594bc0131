"""
Coin wallets.

The ledger never touches balances directly; it talks to a :class:`BaseWallet`.
Every movement carries an idempotency key, and repeating a key is a no-op,
so at-least-once delivery of credits cannot pay a member twice.

``db`` is passed to every call so a wallet that lives in the same database
joins the caller's transaction: a stake debit commits or rolls back together
with the bet it pays for.  A remote wallet may ignore it.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gamenight.errors import InsufficientBalance, InvalidAmount
from gamenight.models import Wallet, WalletTransaction, utcnow

logger = logging.getLogger(__name__)


class BaseWallet(ABC):
    @abstractmethod
    def get_balance(self, db: Session, user_id: int) -> int:
        ...

    @abstractmethod
    def debit(self, db: Session, user_id: int, amount: int, idempotency_key: str) -> bool:
        """Remove *amount* coins.  Raises ``InsufficientBalance``."""

    @abstractmethod
    def credit(self, db: Session, user_id: int, amount: int, idempotency_key: str) -> bool:
        """Add *amount* coins.  Returns False if the key was already applied."""


class CoinWallet(BaseWallet):
    """Balances in the ``wallets`` table, journal in ``wallet_transactions``."""

    def get_balance(self, db: Session, user_id: int) -> int:
        coins = db.execute(
            select(Wallet.coins).where(Wallet.user_id == user_id)
        ).scalar_one_or_none()
        return coins or 0

    @staticmethod
    def _already_applied(db: Session, idempotency_key: str) -> bool:
        return db.execute(
            select(WalletTransaction.id).where(WalletTransaction.idempotency_key == idempotency_key)
        ).first() is not None

    def debit(self, db: Session, user_id: int, amount: int, idempotency_key: str) -> bool:
        if amount <= 0:
            raise InvalidAmount(f"Debit must be positive, got {amount}", amount=amount)
        if self._already_applied(db, idempotency_key):
            return False

        # Conditional decrement: the balance check and the write are one statement
        updated = db.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.coins >= amount)
            .values(coins=Wallet.coins - amount, updated_at=utcnow())
        ).rowcount
        if updated != 1:
            raise InsufficientBalance(
                f"Member {user_id} cannot cover {amount} coins",
                user_id=user_id,
                amount=amount,
                balance=self.get_balance(db, user_id),
            )
        db.add(WalletTransaction(user_id=user_id, amount=-amount, idempotency_key=idempotency_key))
        db.flush()
        return True

    def credit(self, db: Session, user_id: int, amount: int, idempotency_key: str) -> bool:
        if amount <= 0:
            raise InvalidAmount(f"Credit must be positive, got {amount}", amount=amount)
        if self._already_applied(db, idempotency_key):
            logger.debug("Credit %s already applied", idempotency_key)
            return False

        updated = db.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(coins=Wallet.coins + amount, updated_at=utcnow())
        ).rowcount
        if updated != 1:
            db.add(Wallet(user_id=user_id, coins=amount))
        db.add(WalletTransaction(user_id=user_id, amount=amount, idempotency_key=idempotency_key))
        db.flush()
        return True

    def deposit(self, db: Session, user_id: int, amount: int, idempotency_key: str) -> bool:
        """Top up a member's wallet (seeding, admin grants)."""
        return self.credit(db, user_id, amount, idempotency_key)
