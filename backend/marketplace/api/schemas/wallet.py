"""Pydantic schemas for the wallet API."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from marketplace.models.wallet import WalletTransactionStatus, WalletTransactionType


class AmountRequest(BaseModel):
    # Positivity is checked by the ledger so the error carries INVALID_AMOUNT
    amount: int = Field(..., description="Amount in the smallest currency unit")
    description: Optional[str] = Field(None, max_length=255)


class WalletResponse(BaseModel):
    account_id: str
    balance: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WalletTransactionResponse(BaseModel):
    id: int
    type: WalletTransactionType
    amount: int
    signed_amount: int
    resulting_balance: int
    status: WalletTransactionStatus
    description: Optional[str] = None
    reservation_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WalletTransactionListResponse(BaseModel):
    transactions: List[WalletTransactionResponse]
    total: int = Field(..., description="Total transactions on the wallet")
    limit: int
    offset: int
