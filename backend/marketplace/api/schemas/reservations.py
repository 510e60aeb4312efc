"""
Pydantic schemas for the reservations API.

The acting account comes from the identity dependency; request bodies carry
only what the action itself needs.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from marketplace.models.reservation import PaymentMethod, RejectionReason, ReservationStatus


class CreateReservationRequest(BaseModel):
    listing_id: str = Field(..., min_length=1, description="Listing to reserve")
    message: Optional[str] = Field(None, max_length=2000, description="Optional note to the seller")


class DeliverRequest(BaseModel):
    seller_phone: Optional[str] = Field(
        None, max_length=32, description="Contact number for payment; defaults to the account phone"
    )


class PayRequest(BaseModel):
    payment_method: PaymentMethod = Field(..., description="wallet, cash, bank_transfer or mobile_money")
    amount: Optional[int] = Field(None, description="Required for wallet payments, smallest currency unit")
    reference: Optional[str] = Field(
        None, max_length=255, description="Confirmation code; required for bank_transfer and mobile_money"
    )


class ReservationResponse(BaseModel):
    """A reservation as seen by its buyer or seller."""

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: ReservationStatus
    message: Optional[str] = None
    rejection_reason: Optional[RejectionReason] = None
    seller_phone: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    amount: Optional[int] = None

    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReservationListResponse(BaseModel):
    reservations: List[ReservationResponse]
    limit: int
    offset: int


class TimelineEntry(BaseModel):
    status: ReservationStatus
    at: Optional[datetime] = None


class ReservationHistoryResponse(BaseModel):
    reservation_id: str
    timeline: List[TimelineEntry]
