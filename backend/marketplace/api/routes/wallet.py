"""
Wallet API routes: balance, deposits, withdrawals and transaction history.

Every route acts on the caller's own wallet, created on first use.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.dependencies.db import get_db
from marketplace.api.dependencies.identity import get_account_id
from marketplace.api.schemas.wallet import (
    AmountRequest,
    WalletResponse,
    WalletTransactionListResponse,
    WalletTransactionResponse,
)
from marketplace.config.settings import clamp_history_limit
from marketplace.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


def get_ledger(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


@router.get("", response_model=WalletResponse)
def get_wallet(
    account_id: str = Depends(get_account_id),
    ledger: LedgerService = Depends(get_ledger),
):
    return WalletResponse.model_validate(ledger.get_or_create(account_id))


@router.post("/deposit", response_model=WalletTransactionResponse, status_code=201)
def deposit(
    body: AmountRequest,
    account_id: str = Depends(get_account_id),
    ledger: LedgerService = Depends(get_ledger),
):
    txn = ledger.credit(account_id, body.amount, description=body.description)
    return WalletTransactionResponse.model_validate(txn)


@router.post("/withdraw", response_model=WalletTransactionResponse, status_code=201)
def withdraw(
    body: AmountRequest,
    account_id: str = Depends(get_account_id),
    ledger: LedgerService = Depends(get_ledger),
):
    """402 INSUFFICIENT_FUNDS when the balance does not cover the amount."""
    txn = ledger.debit(account_id, body.amount, description=body.description)
    return WalletTransactionResponse.model_validate(txn)


@router.get("/transactions", response_model=WalletTransactionListResponse)
def list_transactions(
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(get_account_id),
    ledger: LedgerService = Depends(get_ledger),
):
    """Newest first."""
    page_size = clamp_history_limit(limit)
    transactions = ledger.history(account_id, limit=page_size, offset=offset)
    return WalletTransactionListResponse(
        transactions=[WalletTransactionResponse.model_validate(t) for t in transactions],
        total=ledger.count(account_id),
        limit=page_size,
        offset=offset,
    )
