"""
Reservation (booking) model and its transition table.

A reservation ties one listing, one buyer and one seller (the listing owner).
Rows are never deleted; they end in a terminal status for audit.

Lifecycle:
    pending -> accepted -> delivered -> delivery_confirmed -> paid -> completed
    pending | accepted -> rejected (seller rejects pending, or superseded on accept)
    pending | accepted -> cancelled (buyer withdraws before payment)

At most one reservation per listing may be in an occupying status
(accepted .. paid). Multiple pending reservations may coexist.
"""

import enum
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin
from marketplace.platform.errors import InvalidTransitionError


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DELIVERED = "delivered"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    PAID = "paid"
    COMPLETED = "completed"


TERMINAL_STATUSES: FrozenSet[ReservationStatus] = frozenset({
    ReservationStatus.REJECTED,
    ReservationStatus.CANCELLED,
    ReservationStatus.COMPLETED,
})

# Statuses that hold the listing; only one reservation per listing may be here
OCCUPYING_STATUSES: FrozenSet[ReservationStatus] = frozenset({
    ReservationStatus.ACCEPTED,
    ReservationStatus.DELIVERED,
    ReservationStatus.DELIVERY_CONFIRMED,
    ReservationStatus.PAID,
})


class PaymentMethod(str, enum.Enum):
    WALLET = "wallet"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"


# Out-of-band methods that must carry a confirmation/reference code
REFERENCE_REQUIRED_METHODS: FrozenSet[PaymentMethod] = frozenset({
    PaymentMethod.BANK_TRANSFER,
    PaymentMethod.MOBILE_MONEY,
})


class ReservationAction(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    DELIVER = "deliver"
    CONFIRM_DELIVERY = "confirm_delivery"
    PAY = "pay"
    COMPLETE = "complete"


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    SYSTEM = "system"


class RejectionReason(str, enum.Enum):
    SELLER = "seller"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[ReservationStatus]
    target: ReservationStatus
    roles: FrozenSet[ActorRole]


TRANSITIONS: Mapping[ReservationAction, TransitionRule] = MappingProxyType({
    ReservationAction.ACCEPT: TransitionRule(
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.ACCEPTED,
        frozenset({ActorRole.SELLER}),
    ),
    ReservationAction.REJECT: TransitionRule(
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.REJECTED,
        frozenset({ActorRole.SELLER}),
    ),
    ReservationAction.CANCEL: TransitionRule(
        frozenset({ReservationStatus.PENDING, ReservationStatus.ACCEPTED}),
        ReservationStatus.CANCELLED,
        frozenset({ActorRole.BUYER}),
    ),
    ReservationAction.DELIVER: TransitionRule(
        frozenset({ReservationStatus.ACCEPTED}),
        ReservationStatus.DELIVERED,
        frozenset({ActorRole.SELLER}),
    ),
    ReservationAction.CONFIRM_DELIVERY: TransitionRule(
        frozenset({ReservationStatus.DELIVERED}),
        ReservationStatus.DELIVERY_CONFIRMED,
        frozenset({ActorRole.BUYER}),
    ),
    ReservationAction.PAY: TransitionRule(
        frozenset({ReservationStatus.DELIVERY_CONFIRMED}),
        ReservationStatus.PAID,
        frozenset({ActorRole.BUYER}),
    ),
    ReservationAction.COMPLETE: TransitionRule(
        frozenset({ReservationStatus.PAID}),
        ReservationStatus.COMPLETED,
        frozenset({ActorRole.SELLER, ActorRole.SYSTEM}),
    ),
})

# Column stamped when a reservation enters each status
STATUS_TIMESTAMP_COLUMNS: Mapping[ReservationStatus, str] = MappingProxyType({
    ReservationStatus.ACCEPTED: "accepted_at",
    ReservationStatus.REJECTED: "rejected_at",
    ReservationStatus.CANCELLED: "cancelled_at",
    ReservationStatus.DELIVERED: "delivered_at",
    ReservationStatus.DELIVERY_CONFIRMED: "delivery_confirmed_at",
    ReservationStatus.PAID: "paid_at",
    ReservationStatus.COMPLETED: "completed_at",
})


def resolve_transition(
    action: ReservationAction,
    current_status: ReservationStatus,
    role: ActorRole,
) -> TransitionRule:
    """
    Validate (current status, action, role) against the transition table.

    Raises:
        InvalidTransitionError: status or role does not permit the action
    """
    rule = TRANSITIONS[action]
    if current_status not in rule.sources:
        if current_status in TERMINAL_STATUSES:
            message = f"Reservation is already {current_status.value}"
        else:
            message = f"Cannot {action.value} a reservation in status '{current_status.value}'"
        raise InvalidTransitionError(action.value, current_status.value, message)
    if role not in rule.roles:
        allowed = " or ".join(sorted(r.value for r in rule.roles))
        raise InvalidTransitionError(
            action.value,
            current_status.value,
            f"Only the {allowed} can {action.value.replace('_', ' ')} this reservation",
        )
    return rule


class Reservation(Base, TimestampMixin):
    """A buyer's booking of one listing."""

    __tablename__ = "reservations"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    listing_id = Column(String(255), ForeignKey("listings.id"), nullable=False)
    buyer_id = Column(String(255), ForeignKey("accounts.id"), nullable=False, index=True)
    seller_id = Column(
        String(255),
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
        comment="Listing owner at creation time"
    )

    status = Column(
        Enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING,
        index=True,
    )

    message = Column(Text, nullable=True, comment="Optional note from the buyer")

    rejection_reason = Column(Enum(RejectionReason), nullable=True)

    seller_phone = Column(String(32), nullable=True, comment="Snapshot taken at delivery")

    payment_method = Column(Enum(PaymentMethod), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    amount = Column(Integer, nullable=True, comment="Amount paid, smallest currency unit")

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    delivery_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_reservations_listing_status", "listing_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation("
            f"id={self.id}, "
            f"listing_id={self.listing_id}, "
            f"status={self.status.value if self.status else None}"
            f")>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    def timeline(self) -> list[dict]:
        """Applied transitions in lifecycle order, as (status, at) pairs."""
        # STATUS_TIMESTAMP_COLUMNS follows lifecycle order, so no sort is needed
        entries = [{"status": ReservationStatus.PENDING.value, "at": self.created_at}]
        for status, column in STATUS_TIMESTAMP_COLUMNS.items():
            stamped = getattr(self, column)
            if stamped is not None:
                entries.append({"status": status.value, "at": stamped})
        return entries
