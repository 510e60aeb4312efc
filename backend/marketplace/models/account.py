"""
Account model and per-account usage counters.

The tier column holds the stored pack value as written by the billing flow;
it is parsed on every entitlement check so a corrupt value surfaces as
UnknownTierError instead of a silent downgrade.

Counters are only changed through QuotaService conditional updates.
"""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
)

from marketplace.db_base import Base
from marketplace.entitlements.catalog import Tier
from marketplace.models.base import TimestampMixin


class Account(Base, TimestampMixin):
    """A marketplace user account with its subscription tier and usage."""

    __tablename__ = "accounts"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    display_name = Column(String(255), nullable=True)

    phone = Column(
        String(32),
        nullable=True,
        comment="Contact number shared with the buyer at delivery"
    )

    tier = Column(
        String(32),
        nullable=False,
        default=Tier.FREE.value,
        comment="Subscription pack: free, starter, pro, enterprise"
    )

    active_listing_count = Column(Integer, nullable=False, default=0)
    featured_slots_used = Column(Integer, nullable=False, default=0)
    boosts_used_this_period = Column(Integer, nullable=False, default=0)
    team_member_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("active_listing_count >= 0", name="ck_accounts_active_listing_count"),
        CheckConstraint("featured_slots_used >= 0", name="ck_accounts_featured_slots_used"),
        CheckConstraint("boosts_used_this_period >= 0", name="ck_accounts_boosts_used"),
        CheckConstraint("team_member_count >= 0", name="ck_accounts_team_member_count"),
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, tier={self.tier})>"


class ListingModificationCounter(Base):
    """Free modifications used by an account on one listing."""

    __tablename__ = "listing_modification_counters"

    account_id = Column(String(255), ForeignKey("accounts.id"), primary_key=True)
    listing_id = Column(String(255), ForeignKey("listings.id"), primary_key=True)
    modifications_used = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("modifications_used >= 0", name="ck_modification_counters_used"),
    )
