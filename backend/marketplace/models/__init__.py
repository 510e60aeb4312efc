"""
Database models for accounts, listings, reservations and wallets.

Importing this package registers every table on Base.metadata.
"""

from marketplace.models.base import TimestampMixin
from marketplace.models.account import Account, ListingModificationCounter
from marketplace.models.listing import Listing
from marketplace.models.reservation import (
    ActorRole,
    OCCUPYING_STATUSES,
    PaymentMethod,
    RejectionReason,
    Reservation,
    ReservationAction,
    ReservationStatus,
    TERMINAL_STATUSES,
    TRANSITIONS,
)
from marketplace.models.wallet import (
    Wallet,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)

__all__ = [
    "TimestampMixin",
    "Account",
    "ListingModificationCounter",
    "Listing",
    "ActorRole",
    "OCCUPYING_STATUSES",
    "PaymentMethod",
    "RejectionReason",
    "Reservation",
    "ReservationAction",
    "ReservationStatus",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionStatus",
    "WalletTransactionType",
]
