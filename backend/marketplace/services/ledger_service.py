"""
Ledger service: per-account wallets with an append-only transaction log.

INVARIANTS:
- balance never goes negative (conditional UPDATE plus a CHECK constraint)
- every balance change appends exactly one completed WalletTransaction in the
  same savepoint, so the signed sum of completed transactions equals balance
- a rejected debit appends nothing

The service flushes but never commits; the unit-of-work owner commits.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.config.settings import clamp_history_limit
from marketplace.models.base import utcnow
from marketplace.models.wallet import (
    DEBIT_TYPES,
    Wallet,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)
from marketplace.platform.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> int:
    # bool is an int subclass; reject it along with non-integers
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class LedgerService:
    """Wallet operations for any account."""

    def __init__(self, db_session: Session):
        self.db = db_session

    # =========================================================================
    # Wallets
    # =========================================================================

    def get_or_create(self, account_id: str) -> Wallet:
        """
        Return the account's wallet, creating a zero-balance one if missing.

        Idempotent: the unique account_id constraint guarantees a single row;
        a concurrent creator's row is re-read instead.
        """
        if not account_id:
            raise ValidationError("account_id is required")

        wallet = self._find(account_id)
        if wallet is not None:
            return wallet

        try:
            with self.db.begin_nested():
                wallet = Wallet(account_id=account_id, balance=0)
                self.db.add(wallet)
                self.db.flush()
        except IntegrityError:
            wallet = self._find(account_id)
            if wallet is None:
                raise
            return wallet

        logger.info("Wallet created", extra={"account_id": account_id, "wallet_id": wallet.id})
        return wallet

    def balance(self, account_id: str) -> int:
        wallet = self._find(account_id)
        return wallet.balance if wallet is not None else 0

    # =========================================================================
    # Movements
    # =========================================================================

    def credit(
        self,
        account_id: str,
        amount: int,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        """Deposit funds."""
        return self._apply_credit(account_id, amount, WalletTransactionType.DEPOSIT, description, None)

    def refund(
        self,
        account_id: str,
        amount: int,
        reservation_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        """Return funds, typically reversing a payment."""
        return self._apply_credit(
            account_id, amount, WalletTransactionType.REFUND, description, reservation_id
        )

    def debit(
        self,
        account_id: str,
        amount: int,
        *,
        transaction_type: WalletTransactionType = WalletTransactionType.WITHDRAWAL,
        reservation_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        """
        Remove funds only if the balance covers the amount.

        The balance check and the decrement are one conditional UPDATE; a
        rowcount of zero means the funds were not there at write time.

        Raises:
            InvalidAmountError: amount is not a positive integer
            InsufficientFundsError: balance < amount (nothing is recorded)
        """
        amount = _validate_amount(amount)
        if transaction_type not in DEBIT_TYPES:
            raise ValidationError(
                "Debit must be a withdrawal or a payment",
                details={"transaction_type": str(transaction_type)},
            )

        wallet = self.get_or_create(account_id)
        with self.db.begin_nested():
            result = self.db.execute(
                update(Wallet)
                .where(Wallet.id == wallet.id, Wallet.balance >= amount)
                .values(balance=Wallet.balance - amount, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.refresh(wallet)
                logger.warning(
                    "Insufficient wallet funds",
                    extra={
                        "account_id": account_id,
                        "balance": wallet.balance,
                        "requested": amount,
                    },
                )
                raise InsufficientFundsError(account_id, wallet.balance, amount)

            txn = self._append(wallet, transaction_type, amount, description, reservation_id)

        logger.info(
            "Wallet debited",
            extra={
                "account_id": account_id,
                "transaction_type": transaction_type.value,
                "amount": amount,
                "resulting_balance": txn.resulting_balance,
            },
        )
        return txn

    # =========================================================================
    # History
    # =========================================================================

    def history(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[WalletTransaction]:
        """Transactions newest first; restart from any offset."""
        wallet = self._find(account_id)
        if wallet is None:
            return []
        return list(
            self.db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.wallet_id == wallet.id)
                .order_by(WalletTransaction.id.desc())
                .limit(clamp_history_limit(limit))
                .offset(max(0, offset))
            ).scalars()
        )

    def count(self, account_id: str) -> int:
        wallet = self._find(account_id)
        if wallet is None:
            return 0
        return self.db.execute(
            select(func.count(WalletTransaction.id)).where(WalletTransaction.wallet_id == wallet.id)
        ).scalar_one()

    def verify_balance(self, account_id: str) -> bool:
        """Check that completed transactions sum to the stored balance."""
        wallet = self._find(account_id)
        if wallet is None:
            return True
        self.db.refresh(wallet)
        completed = self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.wallet_id == wallet.id,
                WalletTransaction.status == WalletTransactionStatus.COMPLETED,
            )
        ).scalars()
        return sum(t.signed_amount for t in completed) == wallet.balance

    # =========================================================================
    # Internals
    # =========================================================================

    def _find(self, account_id: str) -> Optional[Wallet]:
        return self.db.execute(
            select(Wallet).where(Wallet.account_id == account_id)
        ).scalar_one_or_none()

    def _apply_credit(
        self,
        account_id: str,
        amount: int,
        transaction_type: WalletTransactionType,
        description: Optional[str],
        reservation_id: Optional[str],
    ) -> WalletTransaction:
        amount = _validate_amount(amount)
        wallet = self.get_or_create(account_id)
        with self.db.begin_nested():
            self.db.execute(
                update(Wallet)
                .where(Wallet.id == wallet.id)
                .values(balance=Wallet.balance + amount, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            txn = self._append(wallet, transaction_type, amount, description, reservation_id)

        logger.info(
            "Wallet credited",
            extra={
                "account_id": account_id,
                "transaction_type": transaction_type.value,
                "amount": amount,
                "resulting_balance": txn.resulting_balance,
            },
        )
        return txn

    def _append(
        self,
        wallet: Wallet,
        transaction_type: WalletTransactionType,
        amount: int,
        description: Optional[str],
        reservation_id: Optional[str],
    ) -> WalletTransaction:
        self.db.refresh(wallet)
        txn = WalletTransaction(
            wallet_id=wallet.id,
            account_id=wallet.account_id,
            type=transaction_type,
            amount=amount,
            resulting_balance=wallet.balance,
            status=WalletTransactionStatus.COMPLETED,
            description=description,
            reservation_id=reservation_id,
        )
        self.db.add(txn)
        self.db.flush()
        return txn
