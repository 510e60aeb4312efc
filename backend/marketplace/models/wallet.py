"""
Wallet and wallet transaction models.

A wallet holds a non-negative integer balance in the smallest currency unit.
Transactions are append-only; the signed sum of completed transactions
always equals the wallet balance.
"""

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    DateTime,
)

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin, utcnow


class WalletTransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYMENT = "payment"
    REFUND = "refund"


class WalletTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CREDIT_TYPES = frozenset({WalletTransactionType.DEPOSIT, WalletTransactionType.REFUND})
DEBIT_TYPES = frozenset({WalletTransactionType.WITHDRAWAL, WalletTransactionType.PAYMENT})


class Wallet(Base, TimestampMixin):
    """One balance account per marketplace account, created lazily."""

    __tablename__ = "wallets"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    account_id = Column(
        String(255),
        ForeignKey("accounts.id"),
        nullable=False,
        unique=True,
    )

    balance = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Wallet(id={self.id}, account_id={self.account_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """Immutable ledger entry. Integer ids give a stable append order."""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    wallet_id = Column(String(255), ForeignKey("wallets.id"), nullable=False)
    account_id = Column(String(255), ForeignKey("accounts.id"), nullable=False)

    type = Column(Enum(WalletTransactionType), nullable=False)
    amount = Column(Integer, nullable=False)
    resulting_balance = Column(Integer, nullable=False)
    status = Column(
        Enum(WalletTransactionStatus),
        nullable=False,
        default=WalletTransactionStatus.COMPLETED,
    )

    description = Column(String(255), nullable=True)
    reservation_id = Column(String(255), ForeignKey("reservations.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
        Index("ix_wallet_transactions_wallet_id_id", "wallet_id", "id"),
    )

    @property
    def signed_amount(self) -> int:
        """Positive for deposits and refunds, negative for withdrawals and payments."""
        if self.type in CREDIT_TYPES:
            return self.amount
        return -self.amount

    def __repr__(self) -> str:
        return (
            f"<WalletTransaction(id={self.id}, type={self.type.value if self.type else None}, "
            f"amount={self.amount}, status={self.status.value if self.status else None})>"
        )
