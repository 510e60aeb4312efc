"""
Reservation workflow between a buyer and a listing's seller.

WORKFLOW:
1. Buyer reserves an active, unsold listing (pending)
2. Seller accepts one pending reservation; every other pending reservation on
   the listing is rejected in the same savepoint
3. Seller marks delivery, buyer confirms reception
4. Buyer pays, from the wallet or out of band (cash, bank transfer, mobile money)
5. Seller (or the system) archives the paid reservation as completed

CONCURRENCY:
- Each transition is validated against (status, action, role) and then applied
  with an UPDATE guarded by "status is still what we read". A rowcount of zero
  means another request moved the reservation first; the caller gets
  InvalidTransitionError and nothing is written.
- create and accept lock the listing row and its reservation rows first.
  accept re-reads listing availability under the lock and guards its UPDATE
  with "no other reservation occupies the listing".
- create inserts with INSERT ... SELECT guarded by availability, ownership,
  occupancy and the buyer's live reservations, so stale prechecks cannot
  admit a reservation.
- Wallet payments debit the ledger and advance the reservation in one
  savepoint, so a failed advance also undoes the debit.

Events are published after the writes are flushed; publisher failures are
logged and never undo a transition. The service never commits.
"""

import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import insert, literal, select, update
from sqlalchemy.orm import Session, aliased

from marketplace.models.account import Account
from marketplace.models.base import utcnow
from marketplace.models.listing import Listing
from marketplace.models.reservation import (
    OCCUPYING_STATUSES,
    REFERENCE_REQUIRED_METHODS,
    STATUS_TIMESTAMP_COLUMNS,
    ActorRole,
    PaymentMethod,
    RejectionReason,
    Reservation,
    ReservationAction,
    ReservationStatus,
    resolve_transition,
)
from marketplace.models.wallet import WalletTransactionType
from marketplace.platform.errors import (
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.services.event_publisher import (
    EventPublisher,
    LoggingEventPublisher,
    ReservationEvent,
    ReservationEventType,
    publish_safely,
)
from marketplace.services.ledger_service import LedgerService
from marketplace.services.listing_directory import ListingDirectory, SqlListingDirectory

logger = logging.getLogger(__name__)

CREATE_ACTION = "create"

# Buyer may hold only one live reservation per listing
_BUYER_LIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.ACCEPTED)


class ReservationService:
    """
    Applies reservation transitions on behalf of an authenticated actor.

    actor_id comes from the identity context, never from the request body.
    actor_id=None denotes the system and is accepted only where the
    transition table allows the system role.
    """

    def __init__(
        self,
        db_session: Session,
        listings: Optional[ListingDirectory] = None,
        ledger: Optional[LedgerService] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.db = db_session
        self.listings = listings or SqlListingDirectory(db_session)
        self.ledger = ledger or LedgerService(db_session)
        self.publisher = publisher if publisher is not None else LoggingEventPublisher()

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, listing_id: str, buyer_id: str, message: Optional[str] = None) -> Reservation:
        """
        Reserve a listing as buyer.

        The row is written with INSERT ... SELECT guarded by the same
        conditions the prechecks read, so a reservation accepted or a listing
        sold between the checks and the write still blocks the insert.

        Raises:
            NotFoundError: unknown listing
            InvalidTransitionError: listing unavailable, own listing, listing
                already held by an accepted reservation, or buyer already has
                a live reservation on it
        """
        if not buyer_id:
            raise ValidationError("buyer_id is required")

        seller_id = self.listings.owner_of(listing_id)
        self._check_reservable(listing_id, buyer_id, seller_id)

        reservation_id = str(uuid.uuid4())
        now = utcnow()
        columns = Reservation.__table__.c
        occupant = aliased(Reservation)
        live = aliased(Reservation)
        guarded_row = (
            select(
                literal(reservation_id, type_=columns.id.type),
                literal(listing_id, type_=columns.listing_id.type),
                literal(buyer_id, type_=columns.buyer_id.type),
                literal(seller_id, type_=columns.seller_id.type),
                literal(ReservationStatus.PENDING, type_=columns.status.type),
                literal(message or None, type_=columns.message.type),
                literal(now, type_=columns.created_at.type),
                literal(now, type_=columns.updated_at.type),
            )
            .select_from(Listing)
            .where(
                Listing.id == listing_id,
                Listing.owner_id != buyer_id,
                Listing.is_active.is_(True),
                Listing.is_sold.is_(False),
                Listing.sold_quantity < Listing.quantity,
                ~select(occupant.id)
                .where(
                    occupant.listing_id == listing_id,
                    occupant.status.in_(tuple(OCCUPYING_STATUSES)),
                )
                .exists(),
                ~select(live.id)
                .where(
                    live.listing_id == listing_id,
                    live.buyer_id == buyer_id,
                    live.status.in_(_BUYER_LIVE_STATUSES),
                )
                .exists(),
            )
        )
        with self.db.begin_nested():
            self._lock_listing(listing_id)
            inserted = self.db.execute(
                insert(Reservation).from_select(
                    [
                        "id",
                        "listing_id",
                        "buyer_id",
                        "seller_id",
                        "status",
                        "message",
                        "created_at",
                        "updated_at",
                    ],
                    guarded_row,
                )
            )
            if inserted.rowcount != 1:
                self._raise_not_reservable(listing_id, buyer_id, seller_id)

        reservation = self.db.get(Reservation, reservation_id)

        logger.info(
            "Reservation created",
            extra={
                "reservation_id": reservation.id,
                "listing_id": listing_id,
                "buyer_id": buyer_id,
                "seller_id": seller_id,
            },
        )
        self._emit(ReservationEventType.RESERVATION_CREATED, reservation, seller_id)
        return reservation

    # =========================================================================
    # Seller transitions
    # =========================================================================

    def accept(self, reservation_id: str, actor_id: str) -> Reservation:
        """
        Accept a pending reservation and reject every other pending one on
        the same listing, as a single all-or-nothing operation.
        """
        reservation = self._get(reservation_id)
        role = self._role_of(reservation, actor_id)
        observed = reservation.status
        rule = resolve_transition(ReservationAction.ACCEPT, observed, role)

        now = utcnow()
        with self.db.begin_nested():
            self._lock_listing(reservation.listing_id)
            if not self._is_available(reservation.listing_id):
                logger.warning(
                    "Accept refused on unavailable listing",
                    extra={
                        "reservation_id": reservation.id,
                        "listing_id": reservation.listing_id,
                    },
                )
                raise InvalidTransitionError(
                    ReservationAction.ACCEPT.value,
                    observed.value,
                    "This listing is no longer available",
                )

            other = aliased(Reservation)
            occupied = (
                select(other.id)
                .where(
                    other.listing_id == reservation.listing_id,
                    other.id != reservation.id,
                    other.status.in_(tuple(OCCUPYING_STATUSES)),
                )
                .exists()
            )
            accepted = self.db.execute(
                update(Reservation)
                .where(
                    Reservation.id == reservation.id,
                    Reservation.status == observed,
                    ~occupied,
                )
                .values(status=rule.target, accepted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if accepted.rowcount != 1:
                self._raise_lost_race(reservation, ReservationAction.ACCEPT)

            superseded = self.db.execute(
                select(Reservation.id, Reservation.buyer_id).where(
                    Reservation.listing_id == reservation.listing_id,
                    Reservation.id != reservation.id,
                    Reservation.status == ReservationStatus.PENDING,
                )
            ).all()
            if superseded:
                self.db.execute(
                    update(Reservation)
                    .where(
                        Reservation.id.in_([row.id for row in superseded]),
                        Reservation.status == ReservationStatus.PENDING,
                    )
                    .values(
                        status=ReservationStatus.REJECTED,
                        rejection_reason=RejectionReason.SUPERSEDED,
                        rejected_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

        self.db.expire_all()
        self.db.refresh(reservation)

        logger.info(
            "Reservation accepted",
            extra={
                "reservation_id": reservation.id,
                "listing_id": reservation.listing_id,
                "superseded_count": len(superseded),
            },
        )
        self._emit(ReservationEventType.RESERVATION_ACCEPTED, reservation, reservation.buyer_id)
        for row in superseded:
            publish_safely(self.publisher, ReservationEvent(
                event_type=ReservationEventType.RESERVATION_REJECTED,
                reservation_id=row.id,
                listing_id=reservation.listing_id,
                recipient_id=row.buyer_id,
                payload={"reason": RejectionReason.SUPERSEDED.value},
            ))
        return reservation

    def reject(self, reservation_id: str, actor_id: str) -> Reservation:
        reservation = self._transition(
            reservation_id,
            actor_id,
            ReservationAction.REJECT,
            extra_values={"rejection_reason": RejectionReason.SELLER},
        )
        self._emit(
            ReservationEventType.RESERVATION_REJECTED,
            reservation,
            reservation.buyer_id,
            reason=RejectionReason.SELLER.value,
        )
        return reservation

    def deliver(self, reservation_id: str, actor_id: str, seller_phone: Optional[str] = None) -> Reservation:
        """
        Seller marks the item as handed over.

        The contact number shown to the buyer for payment defaults to the
        seller account's phone.
        """
        if not seller_phone:
            seller = self.db.get(Account, self._get(reservation_id).seller_id)
            seller_phone = seller.phone if seller is not None else None
        extra = {"seller_phone": seller_phone} if seller_phone else None
        reservation = self._transition(
            reservation_id, actor_id, ReservationAction.DELIVER, extra_values=extra
        )
        self._emit(ReservationEventType.DELIVERY_MARKED, reservation, reservation.buyer_id)
        return reservation

    def complete(self, reservation_id: str, actor_id: Optional[str] = None) -> Reservation:
        """Archive a paid reservation (seller or system)."""
        reservation = self._transition(reservation_id, actor_id, ReservationAction.COMPLETE)
        self._emit(ReservationEventType.RESERVATION_COMPLETED, reservation, reservation.buyer_id)
        return reservation

    # =========================================================================
    # Buyer transitions
    # =========================================================================

    def cancel(self, reservation_id: str, actor_id: str) -> Reservation:
        reservation = self._transition(reservation_id, actor_id, ReservationAction.CANCEL)
        self._emit(ReservationEventType.RESERVATION_CANCELLED, reservation, reservation.seller_id)
        return reservation

    def confirm_delivery(self, reservation_id: str, actor_id: str) -> Reservation:
        reservation = self._transition(reservation_id, actor_id, ReservationAction.CONFIRM_DELIVERY)
        self._emit(ReservationEventType.DELIVERY_CONFIRMED, reservation, reservation.seller_id)
        return reservation

    def pay(
        self,
        reservation_id: str,
        actor_id: str,
        payment_method: Optional[PaymentMethod],
        amount: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> Reservation:
        """
        Record payment for a reservation whose delivery the buyer confirmed.

        Wallet payments debit the buyer's wallet first and advance only if
        the debit succeeds. Out-of-band methods record the method and
        reference without touching the ledger.

        Raises:
            InvalidTransitionError: wrong status or not the buyer
            ValidationError: missing method, or missing reference where required
            InvalidAmountError: amount not a positive integer (required for wallet)
            InsufficientFundsError: wallet balance below amount (nothing changes)
        """
        reservation = self._get(reservation_id)
        role = self._role_of(reservation, actor_id)
        observed = reservation.status
        rule = resolve_transition(ReservationAction.PAY, observed, role)

        method = self._parse_method(payment_method)
        reference = (reference or "").strip() or None
        # Wallet payments need an amount; others may record one
        if method is PaymentMethod.WALLET or amount is not None:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAmountError(amount)
        if method in REFERENCE_REQUIRED_METHODS and not reference:
            raise ValidationError(
                f"A reference code is required for {method.value} payments",
                details={"payment_method": method.value},
            )

        now = utcnow()
        with self.db.begin_nested():
            if method is PaymentMethod.WALLET:
                txn = self.ledger.debit(
                    reservation.buyer_id,
                    amount,
                    transaction_type=WalletTransactionType.PAYMENT,
                    reservation_id=reservation.id,
                    description=f"Payment for reservation {reservation.id}",
                )
                reference = reference or f"wallet-txn-{txn.id}"

            result = self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation.id, Reservation.status == observed)
                .values(
                    status=rule.target,
                    payment_method=method,
                    payment_reference=reference,
                    amount=amount,
                    paid_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self._raise_lost_race(reservation, ReservationAction.PAY)

            sold_out = self.listings.record_sale(reservation.listing_id)

        self.db.refresh(reservation)
        logger.info(
            "Reservation paid",
            extra={
                "reservation_id": reservation.id,
                "payment_method": method.value,
                "amount": amount,
                "listing_sold_out": sold_out,
            },
        )
        self._emit(
            ReservationEventType.PAYMENT_RECORDED,
            reservation,
            reservation.seller_id,
            payment_method=method.value,
            amount=amount,
            reference=reference,
        )
        return reservation

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, reservation_id: str, actor_id: str) -> Reservation:
        """Fetch a reservation visible to one of its parties."""
        reservation = self._get(reservation_id)
        self._role_of(reservation, actor_id)
        return reservation

    def list_for_seller(self, seller_id: str, limit: int = 50, offset: int = 0) -> List[Reservation]:
        return self._list(Reservation.seller_id == seller_id, limit, offset)

    def list_for_buyer(self, buyer_id: str, limit: int = 50, offset: int = 0) -> List[Reservation]:
        return self._list(Reservation.buyer_id == buyer_id, limit, offset)

    def list_for_listing(self, listing_id: str) -> List[Reservation]:
        return self._list(Reservation.listing_id == listing_id, None, 0)

    def history(self, reservation_id: str, actor_id: str) -> List[Dict[str, object]]:
        """Applied transitions of a reservation, oldest first."""
        return self.get(reservation_id, actor_id).timeline()

    # =========================================================================
    # Internals
    # =========================================================================

    def _get(self, reservation_id: str) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    @staticmethod
    def _role_of(reservation: Reservation, actor_id: Optional[str]) -> ActorRole:
        if actor_id is None:
            return ActorRole.SYSTEM
        if actor_id == reservation.buyer_id:
            return ActorRole.BUYER
        if actor_id == reservation.seller_id:
            return ActorRole.SELLER
        raise UnauthorizedError(details={"reservation_id": reservation.id})

    @staticmethod
    def _parse_method(payment_method) -> PaymentMethod:
        if payment_method is None or payment_method == "":
            raise ValidationError("A payment method is required")
        try:
            return PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(
                "Unsupported payment method",
                details={"payment_method": str(payment_method)},
            ) from None

    def _transition(
        self,
        reservation_id: str,
        actor_id: Optional[str],
        action: ReservationAction,
        extra_values: Optional[dict] = None,
    ) -> Reservation:
        """Validate and apply a single-row transition with a status guard."""
        reservation = self._get(reservation_id)
        role = self._role_of(reservation, actor_id)
        observed = reservation.status
        rule = resolve_transition(action, observed, role)

        now = utcnow()
        values = {
            "status": rule.target,
            STATUS_TIMESTAMP_COLUMNS[rule.target]: now,
            "updated_at": now,
        }
        if extra_values:
            values.update(extra_values)

        result = self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation.id, Reservation.status == observed)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._raise_lost_race(reservation, action)

        self.db.refresh(reservation)
        logger.info(
            "Reservation transitioned",
            extra={
                "reservation_id": reservation.id,
                "action": action.value,
                "from_status": observed.value,
                "to_status": rule.target.value,
                "actor_role": role.value,
            },
        )
        return reservation

    def _raise_lost_race(self, reservation: Reservation, action: ReservationAction) -> None:
        """Report a guarded UPDATE that matched nothing, using the fresh state."""
        self.db.refresh(reservation)
        current = reservation.status
        if action is ReservationAction.ACCEPT and current is ReservationStatus.PENDING:
            message = "This listing already has an accepted reservation; cancel it first"
        else:
            message = f"Reservation changed concurrently and is now '{current.value}'"
        logger.warning(
            "Reservation transition lost a race",
            extra={
                "reservation_id": reservation.id,
                "action": action.value,
                "current_status": current.value,
            },
        )
        raise InvalidTransitionError(action.value, current.value, message)

    def _lock_listing(self, listing_id: str) -> None:
        """Lock the listing and its reservations, reloading the listing row."""
        # FOR UPDATE is a no-op on SQLite, where writers are serialized anyway
        self.db.execute(
            select(Listing)
            .where(Listing.id == listing_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
        self.db.execute(
            select(Reservation.id)
            .where(Reservation.listing_id == listing_id)
            .with_for_update()
        ).all()

    def _is_available(self, listing_id: str) -> bool:
        return self.listings.is_active(listing_id) and not self.listings.is_sold(listing_id)

    def _check_reservable(self, listing_id: str, buyer_id: str, seller_id: str) -> None:
        if not self._is_available(listing_id):
            raise InvalidTransitionError(
                CREATE_ACTION, None, "This listing is no longer available"
            )
        if seller_id == buyer_id:
            raise InvalidTransitionError(
                CREATE_ACTION, None, "You cannot reserve your own listing"
            )
        if self._occupant(listing_id) is not None:
            raise InvalidTransitionError(
                CREATE_ACTION, None, "This listing already has an accepted reservation"
            )
        if self._has_live_reservation(listing_id, buyer_id):
            raise InvalidTransitionError(
                CREATE_ACTION, None, "You already have a reservation in progress for this listing"
            )

    def _raise_not_reservable(self, listing_id: str, buyer_id: str, seller_id: str) -> None:
        """Report a guarded INSERT that matched nothing, using the fresh state."""
        logger.warning(
            "Reservation create lost a race",
            extra={"listing_id": listing_id, "buyer_id": buyer_id},
        )
        self._check_reservable(listing_id, buyer_id, seller_id)
        raise InvalidTransitionError(
            CREATE_ACTION, None, "This listing is no longer available"
        )

    def _occupant(self, listing_id: str) -> Optional[str]:
        return self.db.execute(
            select(Reservation.id).where(
                Reservation.listing_id == listing_id,
                Reservation.status.in_(tuple(OCCUPYING_STATUSES)),
            ).limit(1)
        ).scalar_one_or_none()

    def _has_live_reservation(self, listing_id: str, buyer_id: str) -> bool:
        return self.db.execute(
            select(Reservation.id).where(
                Reservation.listing_id == listing_id,
                Reservation.buyer_id == buyer_id,
                Reservation.status.in_(_BUYER_LIVE_STATUSES),
            ).limit(1)
        ).scalar_one_or_none() is not None

    def _list(self, condition, limit: Optional[int], offset: int) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(condition)
            .order_by(Reservation.created_at.desc(), Reservation.id)
            .offset(max(0, offset))
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars())

    def _emit(
        self,
        event_type: ReservationEventType,
        reservation: Reservation,
        recipient_id: str,
        **payload,
    ) -> None:
        publish_safely(self.publisher, ReservationEvent(
            event_type=event_type,
            reservation_id=reservation.id,
            listing_id=reservation.listing_id,
            recipient_id=recipient_id,
            payload={"status": reservation.status.value, **payload},
        ))
