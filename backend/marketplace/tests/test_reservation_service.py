"""
Tests for ReservationService.

CRITICAL: These tests verify that:
1. Each action is allowed only from its source status and for its role
2. accept rejects every other pending reservation on the listing at once
3. Wallet payments move money and status together or not at all
4. Terminal reservations never move again
5. Notification failures never undo a transition
"""

from unittest.mock import Mock

import pytest

from marketplace.models.reservation import (
    PaymentMethod,
    RejectionReason,
    Reservation,
    ReservationStatus,
)
from marketplace.models.wallet import WalletTransactionType
from marketplace.platform.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.services.event_publisher import ReservationEventType
from marketplace.services.ledger_service import LedgerService
from marketplace.services.reservation_service import ReservationService


def _confirmed(service, listing, buyer, seller):
    """Walk a fresh reservation up to delivery_confirmed."""
    reservation = service.create(listing.id, buyer.id)
    service.accept(reservation.id, seller.id)
    service.deliver(reservation.id, seller.id)
    return service.confirm_delivery(reservation.id, buyer.id)


class TestCreate:

    def test_creates_pending_reservation(self, reservation_service, publisher, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id, "Still available?")
        assert reservation.status is ReservationStatus.PENDING
        assert reservation.seller_id == seller.id
        assert reservation.message == "Still available?"

        events = publisher.of_type(ReservationEventType.RESERVATION_CREATED)
        assert len(events) == 1
        assert events[0].recipient_id == seller.id

    def test_unknown_listing(self, reservation_service, buyer):
        with pytest.raises(NotFoundError):
            reservation_service.create("missing", buyer.id)

    def test_cannot_reserve_own_listing(self, reservation_service, listing, seller):
        with pytest.raises(InvalidTransitionError, match="own listing"):
            reservation_service.create(listing.id, seller.id)

    def test_inactive_listing(self, reservation_service, make_listing, seller, buyer):
        inactive = make_listing(seller, is_active=False)
        with pytest.raises(InvalidTransitionError, match="no longer available"):
            reservation_service.create(inactive.id, buyer.id)

    def test_sold_listing(self, reservation_service, make_listing, seller, buyer):
        sold = make_listing(seller, is_sold=True)
        with pytest.raises(InvalidTransitionError):
            reservation_service.create(sold.id, buyer.id)

    def test_pending_reservations_coexist(self, reservation_service, listing, make_account):
        first = reservation_service.create(listing.id, make_account().id)
        second = reservation_service.create(listing.id, make_account().id)
        assert first.status is second.status is ReservationStatus.PENDING

    def test_same_buyer_cannot_reserve_twice(self, reservation_service, listing, buyer):
        reservation_service.create(listing.id, buyer.id)
        with pytest.raises(InvalidTransitionError, match="already have a reservation"):
            reservation_service.create(listing.id, buyer.id)

    def test_accepted_reservation_blocks_new_ones(self, reservation_service, listing, buyer, seller, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError, match="accepted reservation"):
            reservation_service.create(listing.id, make_account().id)

    def test_buyer_may_retry_after_rejection(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.reject(reservation.id, seller.id)
        again = reservation_service.create(listing.id, buyer.id)
        assert again.id != reservation.id


class TestAccept:

    def test_accept_rejects_other_pending(self, reservation_service, publisher, listing, seller, make_account):
        buyers = [make_account() for _ in range(3)]
        reservations = [reservation_service.create(listing.id, b.id) for b in buyers]

        accepted = reservation_service.accept(reservations[0].id, seller.id)

        assert accepted.status is ReservationStatus.ACCEPTED
        assert accepted.accepted_at is not None
        for other in reservations[1:]:
            assert other.status is ReservationStatus.REJECTED
            assert other.rejection_reason is RejectionReason.SUPERSEDED
            assert other.rejected_at is not None

        rejected_events = publisher.of_type(ReservationEventType.RESERVATION_REJECTED)
        assert {e.recipient_id for e in rejected_events} == {buyers[1].id, buyers[2].id}
        assert publisher.of_type(ReservationEventType.RESERVATION_ACCEPTED)[0].recipient_id == buyers[0].id

    def test_superseded_cannot_be_accepted(self, reservation_service, listing, seller, make_account):
        first = reservation_service.create(listing.id, make_account().id)
        second = reservation_service.create(listing.id, make_account().id)
        reservation_service.accept(first.id, seller.id)
        with pytest.raises(InvalidTransitionError, match="already rejected"):
            reservation_service.accept(second.id, seller.id)

    def test_other_listings_untouched(self, reservation_service, make_listing, seller, buyer, make_account):
        listing_a = make_listing(seller)
        listing_b = make_listing(seller)
        on_a = reservation_service.create(listing_a.id, buyer.id)
        on_b = reservation_service.create(listing_b.id, make_account().id)
        reservation_service.accept(on_a.id, seller.id)
        assert on_b.status is ReservationStatus.PENDING

    def test_occupied_listing_refuses_second_accept(self, reservation_service, db_session, listing, buyer, seller, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        latecomer = Reservation(
            listing_id=listing.id,
            buyer_id=make_account().id,
            seller_id=seller.id,
            status=ReservationStatus.PENDING,
        )
        db_session.add(latecomer)
        db_session.flush()

        with pytest.raises(InvalidTransitionError, match="cancel it first"):
            reservation_service.accept(latecomer.id, seller.id)
        db_session.refresh(latecomer)
        assert latecomer.status is ReservationStatus.PENDING

    def test_deactivated_listing_refuses_accept(self, reservation_service, db_session, listing, buyer, seller):
        """A listing withdrawn after the reservation was made cannot be accepted."""
        reservation = reservation_service.create(listing.id, buyer.id)
        listing.is_active = False
        db_session.flush()

        with pytest.raises(InvalidTransitionError, match="no longer available"):
            reservation_service.accept(reservation.id, seller.id)
        db_session.refresh(reservation)
        assert reservation.status is ReservationStatus.PENDING
        assert reservation.accepted_at is None

    def test_sold_listing_refuses_accept(self, reservation_service, db_session, listing, buyer, seller, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        other = reservation_service.create(listing.id, make_account().id)
        listing.is_sold = True
        db_session.flush()

        with pytest.raises(InvalidTransitionError, match="no longer available"):
            reservation_service.accept(reservation.id, seller.id)
        for pending in (reservation, other):
            db_session.refresh(pending)
            assert pending.status is ReservationStatus.PENDING

    def test_buyer_cannot_accept(self, reservation_service, listing, buyer):
        reservation = reservation_service.create(listing.id, buyer.id)
        with pytest.raises(InvalidTransitionError, match="Only the seller"):
            reservation_service.accept(reservation.id, buyer.id)

    def test_stranger_is_unauthorized(self, reservation_service, listing, buyer, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        with pytest.raises(UnauthorizedError):
            reservation_service.accept(reservation.id, make_account().id)

    def test_unknown_reservation(self, reservation_service, seller):
        with pytest.raises(NotFoundError):
            reservation_service.accept("missing", seller.id)


class TestRejectAndCancel:

    def test_seller_rejects_pending(self, reservation_service, publisher, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        rejected = reservation_service.reject(reservation.id, seller.id)
        assert rejected.status is ReservationStatus.REJECTED
        assert rejected.rejection_reason is RejectionReason.SELLER
        assert publisher.of_type(ReservationEventType.RESERVATION_REJECTED)[0].recipient_id == buyer.id

    def test_cannot_reject_accepted(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.reject(reservation.id, seller.id)

    def test_buyer_cancels_accepted_and_frees_listing(self, reservation_service, listing, buyer, seller, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        cancelled = reservation_service.cancel(reservation.id, buyer.id)
        assert cancelled.status is ReservationStatus.CANCELLED
        assert cancelled.cancelled_at is not None

        fresh = reservation_service.create(listing.id, make_account().id)
        assert fresh.status is ReservationStatus.PENDING

    def test_seller_cannot_cancel(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        with pytest.raises(InvalidTransitionError, match="Only the buyer"):
            reservation_service.cancel(reservation.id, seller.id)

    def test_cancel_rejected_fails(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.reject(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError, match="already rejected"):
            reservation_service.cancel(reservation.id, buyer.id)

    def test_cancel_completed_fails(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        reservation_service.complete(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError, match="already completed"):
            reservation_service.cancel(reservation.id, buyer.id)

    def test_cancel_after_delivery_fails(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        reservation_service.deliver(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.cancel(reservation.id, buyer.id)


class TestDelivery:

    def test_deliver_records_account_phone(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        delivered = reservation_service.deliver(reservation.id, seller.id)
        assert delivered.status is ReservationStatus.DELIVERED
        assert delivered.seller_phone == seller.phone

    def test_deliver_with_explicit_phone(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        delivered = reservation_service.deliver(reservation.id, seller.id, seller_phone="+261330000002")
        assert delivered.seller_phone == "+261330000002"

    def test_deliver_requires_accepted(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.deliver(reservation.id, seller.id)

    def test_only_buyer_confirms(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        reservation_service.deliver(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.confirm_delivery(reservation.id, seller.id)
        confirmed = reservation_service.confirm_delivery(reservation.id, buyer.id)
        assert confirmed.status is ReservationStatus.DELIVERY_CONFIRMED


class TestPay:

    def test_wallet_insufficient_funds_changes_nothing(self, reservation_service, db_session, listing, buyer, seller):
        ledger = LedgerService(db_session)
        ledger.credit(buyer.id, 100)
        reservation = _confirmed(reservation_service, listing, buyer, seller)

        with pytest.raises(InsufficientFundsError):
            reservation_service.pay(reservation.id, buyer.id, PaymentMethod.WALLET, amount=150)

        db_session.refresh(reservation)
        assert reservation.status is ReservationStatus.DELIVERY_CONFIRMED
        assert reservation.payment_method is None
        assert ledger.balance(buyer.id) == 100
        assert ledger.count(buyer.id) == 1

    def test_wallet_payment(self, reservation_service, publisher, db_session, listing, buyer, seller):
        ledger = LedgerService(db_session)
        ledger.credit(buyer.id, 200)
        reservation = _confirmed(reservation_service, listing, buyer, seller)

        paid = reservation_service.pay(reservation.id, buyer.id, PaymentMethod.WALLET, amount=150)

        assert paid.status is ReservationStatus.PAID
        assert paid.payment_method is PaymentMethod.WALLET
        assert paid.amount == 150
        assert ledger.balance(buyer.id) == 50
        payments = [t for t in ledger.history(buyer.id) if t.type is WalletTransactionType.PAYMENT]
        assert len(payments) == 1
        assert payments[0].amount == 150
        assert payments[0].reservation_id == reservation.id
        assert publisher.of_type(ReservationEventType.PAYMENT_RECORDED)[0].recipient_id == seller.id

    def test_payment_marks_single_unit_listing_sold(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        assert listing.sold_quantity == 1
        assert listing.is_sold is True
        assert listing.is_active is False

    def test_multi_unit_listing_stays_active(self, reservation_service, make_listing, buyer, seller):
        stocked = make_listing(seller, quantity=3)
        reservation = _confirmed(reservation_service, stocked, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        assert stocked.sold_quantity == 1
        assert stocked.is_sold is False
        assert stocked.is_active is True

    def test_mobile_money_requires_reference(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        with pytest.raises(ValidationError, match="reference"):
            reservation_service.pay(reservation.id, buyer.id, PaymentMethod.MOBILE_MONEY)
        paid = reservation_service.pay(
            reservation.id, buyer.id, PaymentMethod.MOBILE_MONEY, reference="MVOLA-123"
        )
        assert paid.payment_reference == "MVOLA-123"

    def test_out_of_band_payment_skips_ledger(self, reservation_service, db_session, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, "cash")
        assert LedgerService(db_session).count(buyer.id) == 0

    def test_wallet_requires_positive_amount(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        with pytest.raises(InvalidAmountError):
            reservation_service.pay(reservation.id, buyer.id, PaymentMethod.WALLET)
        with pytest.raises(InvalidAmountError):
            reservation_service.pay(reservation.id, buyer.id, PaymentMethod.WALLET, amount=-5)

    def test_method_is_required(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        with pytest.raises(ValidationError):
            reservation_service.pay(reservation.id, buyer.id, None)
        with pytest.raises(ValidationError, match="Unsupported"):
            reservation_service.pay(reservation.id, buyer.id, "bitcoin")

    def test_pay_before_confirmation(self, reservation_service, listing, buyer, seller):
        reservation = reservation_service.create(listing.id, buyer.id)
        reservation_service.accept(reservation.id, seller.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)

    def test_seller_cannot_pay(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        with pytest.raises(InvalidTransitionError):
            reservation_service.pay(reservation.id, seller.id, PaymentMethod.CASH)


class TestComplete:

    def test_seller_completes(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        completed = reservation_service.complete(reservation.id, seller.id)
        assert completed.status is ReservationStatus.COMPLETED
        assert completed.is_terminal is True

    def test_system_completes(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        assert reservation_service.complete(reservation.id).status is ReservationStatus.COMPLETED

    def test_buyer_cannot_complete(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        with pytest.raises(InvalidTransitionError):
            reservation_service.complete(reservation.id, buyer.id)

    def test_system_cannot_accept(self, reservation_service, listing, buyer):
        reservation = reservation_service.create(listing.id, buyer.id)
        with pytest.raises(InvalidTransitionError):
            reservation_service.accept(reservation.id, None)

    def test_history_follows_lifecycle(self, reservation_service, listing, buyer, seller):
        reservation = _confirmed(reservation_service, listing, buyer, seller)
        reservation_service.pay(reservation.id, buyer.id, PaymentMethod.CASH)
        reservation_service.complete(reservation.id, seller.id)
        timeline = reservation_service.history(reservation.id, buyer.id)
        assert [entry["status"] for entry in timeline] == [
            "pending", "accepted", "delivered", "delivery_confirmed", "paid", "completed",
        ]


class TestQueriesAndEvents:

    def test_parties_can_read(self, reservation_service, listing, buyer, seller, make_account):
        reservation = reservation_service.create(listing.id, buyer.id)
        assert reservation_service.get(reservation.id, buyer.id).id == reservation.id
        assert reservation_service.get(reservation.id, seller.id).id == reservation.id
        with pytest.raises(UnauthorizedError):
            reservation_service.get(reservation.id, make_account().id)

    def test_lists_by_role(self, reservation_service, make_listing, seller, buyer, make_account):
        reservation_service.create(make_listing(seller).id, buyer.id)
        reservation_service.create(make_listing(seller).id, make_account().id)
        assert len(reservation_service.list_for_seller(seller.id)) == 2
        assert len(reservation_service.list_for_buyer(buyer.id)) == 1
        assert reservation_service.list_for_buyer(seller.id) == []

    def test_list_for_listing(self, reservation_service, listing, make_account):
        for _ in range(3):
            reservation_service.create(listing.id, make_account().id)
        assert len(reservation_service.list_for_listing(listing.id)) == 3

    def test_publisher_failure_does_not_undo_transition(self, db_session, listing, buyer, seller):
        failing = Mock()
        failing.publish.side_effect = RuntimeError("push gateway down")
        service = ReservationService(db_session, publisher=failing)

        reservation = service.create(listing.id, buyer.id)
        accepted = service.accept(reservation.id, seller.id)

        db_session.refresh(accepted)
        assert accepted.status is ReservationStatus.ACCEPTED
        assert failing.publish.call_count == 2
