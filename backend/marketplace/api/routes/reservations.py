"""
Reservations API routes.

Provides endpoints for:
- Reserving a listing (buyer)
- Accepting, rejecting, delivering and completing (seller)
- Cancelling, confirming delivery and paying (buyer)
- Reading reservations and their timeline (either party)

SECURITY:
- The acting account comes from the identity dependency, never from the body
- Role checks happen in ReservationService; non-parties get 403
"""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from marketplace.api.dependencies.db import get_db
from marketplace.api.dependencies.identity import get_account_id
from marketplace.api.schemas.reservations import (
    CreateReservationRequest,
    DeliverRequest,
    PayRequest,
    ReservationHistoryResponse,
    ReservationListResponse,
    ReservationResponse,
    TimelineEntry,
)
from marketplace.models.reservation import Reservation
from marketplace.services.event_publisher import EventPublisher, LoggingEventPublisher
from marketplace.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])


def get_event_publisher(request: Request) -> EventPublisher:
    """Publisher installed on the app, or the logging one."""
    publisher = getattr(request.app.state, "event_publisher", None)
    return publisher if publisher is not None else LoggingEventPublisher()


def get_reservation_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> ReservationService:
    return ReservationService(db, publisher=publisher)


def _to_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse.model_validate(reservation)


@router.post("", response_model=ReservationResponse, status_code=201)
def create_reservation(
    body: CreateReservationRequest,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = service.create(body.listing_id, account_id, body.message)
    return _to_response(reservation)


@router.get("/selling", response_model=ReservationListResponse)
def list_selling(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    """Reservations on listings the caller owns, newest first."""
    reservations = service.list_for_seller(account_id, limit=limit, offset=offset)
    return ReservationListResponse(
        reservations=[_to_response(r) for r in reservations],
        limit=limit,
        offset=offset,
    )


@router.get("/buying", response_model=ReservationListResponse)
def list_buying(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    """Reservations the caller made, newest first."""
    reservations = service.list_for_buyer(account_id, limit=limit, offset=offset)
    return ReservationListResponse(
        reservations=[_to_response(r) for r in reservations],
        limit=limit,
        offset=offset,
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return _to_response(service.get(reservation_id, account_id))


@router.get("/{reservation_id}/history", response_model=ReservationHistoryResponse)
def get_reservation_history(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    timeline = service.history(reservation_id, account_id)
    return ReservationHistoryResponse(
        reservation_id=reservation_id,
        timeline=[TimelineEntry(**entry) for entry in timeline],
    )


def _apply(
    action: Callable[[str, str], Reservation],
    reservation_id: str,
    account_id: str,
) -> ReservationResponse:
    return _to_response(action(reservation_id, account_id))


@router.post("/{reservation_id}/accept", response_model=ReservationResponse)
def accept_reservation(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    """Accept; other pending reservations on the listing are rejected."""
    return _apply(service.accept, reservation_id, account_id)


@router.post("/{reservation_id}/reject", response_model=ReservationResponse)
def reject_reservation(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return _apply(service.reject, reservation_id, account_id)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return _apply(service.cancel, reservation_id, account_id)


@router.post("/{reservation_id}/deliver", response_model=ReservationResponse)
def deliver_reservation(
    reservation_id: str,
    body: Optional[DeliverRequest] = None,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    seller_phone = body.seller_phone if body is not None else None
    return _to_response(service.deliver(reservation_id, account_id, seller_phone=seller_phone))


@router.post("/{reservation_id}/confirm-delivery", response_model=ReservationResponse)
def confirm_delivery(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return _apply(service.confirm_delivery, reservation_id, account_id)


@router.post("/{reservation_id}/pay", response_model=ReservationResponse)
def pay_reservation(
    reservation_id: str,
    body: PayRequest,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    """
    Record payment. Wallet payments debit the buyer's wallet; 402 when the
    balance does not cover the amount, with nothing changed.
    """
    reservation = service.pay(
        reservation_id,
        account_id,
        payment_method=body.payment_method,
        amount=body.amount,
        reference=body.reference,
    )
    return _to_response(reservation)


@router.post("/{reservation_id}/complete", response_model=ReservationResponse)
def complete_reservation(
    reservation_id: str,
    account_id: str = Depends(get_account_id),
    service: ReservationService = Depends(get_reservation_service),
):
    return _apply(service.complete, reservation_id, account_id)
