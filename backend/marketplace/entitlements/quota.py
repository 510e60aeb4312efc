"""
Quota consumption: atomic check-and-increment of account usage counters.

Every consume is a single conditional UPDATE ("increment only if the result
stays within the cap of the tier read at call time"). A rowcount of zero means
the cap was reached, possibly by a concurrent request, and the caller gets
QuotaExceededError. The predicate and the write are never separated.

Unlimited tiers still count usage so statistics stay meaningful.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.entitlements import checker
from marketplace.entitlements.catalog import UNLIMITED, EntitlementProfile, LimitKind, Tier, resolve_tier
from marketplace.entitlements.errors import QuotaExceededError
from marketplace.models.account import Account, ListingModificationCounter
from marketplace.models.base import utcnow
from marketplace.platform.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_COUNTER_COLUMNS = {
    LimitKind.ADS: Account.active_listing_count,
    LimitKind.FEATURED: Account.featured_slots_used,
    LimitKind.BOOSTS: Account.boosts_used_this_period,
    LimitKind.TEAM: Account.team_member_count,
}


@dataclass(frozen=True)
class FeaturedGrant:
    """A consumed featured slot."""
    duration_days: int
    featured_until: datetime


@dataclass(frozen=True)
class BoostQuote:
    """Outcome of a boost request: free (allowance consumed) or priced."""
    count: int
    is_free: bool
    price: int


class QuotaService:
    """
    Applies entitlement-gated counter changes for one account at a time.

    The service flushes through the session but never commits.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    # =========================================================================
    # Consume / release
    # =========================================================================

    def try_consume_listing_slot(self, account_id: str) -> Account:
        return self._consume(account_id, LimitKind.ADS)

    def release_listing_slot(self, account_id: str) -> Account:
        return self._release(account_id, LimitKind.ADS)

    def try_consume_featured_slot(self, account_id: str) -> FeaturedGrant:
        account = self._consume(account_id, LimitKind.FEATURED)
        days = checker.featured_duration_days(account.tier)
        return FeaturedGrant(duration_days=days, featured_until=utcnow() + timedelta(days=days))

    def try_consume_free_boost(self, account_id: str, count: int = 1) -> Account:
        """Consume `count` free boosts; all of them must fit in the allowance."""
        if count < 1:
            raise ValidationError("Boost count must be at least 1", details={"count": count})
        return self._consume(account_id, LimitKind.BOOSTS, amount=count)

    def quote_boost(self, account_id: str, count: int = 1) -> BoostQuote:
        """
        Use free boosts when the allowance covers the request, else price it.

        A priced quote is not a refused quota and logs at debug only. The
        paid path consumes nothing; charging is up to the caller.
        """
        if count < 1:
            raise ValidationError("Boost count must be at least 1", details={"count": count})
        account = self._get_account(account_id)
        self.db.refresh(account)
        left = checker.remaining(account.tier, LimitKind.BOOSTS, account.boosts_used_this_period)

        if left is None or left >= count:
            try:
                self.try_consume_free_boost(account_id, count)
                return BoostQuote(count=count, is_free=True, price=0)
            except QuotaExceededError:
                logger.debug(
                    "Free boosts taken by a concurrent request",
                    extra={"account_id": account_id, "count": count},
                )

        price = checker.boost_price(account.tier, count)
        logger.debug(
            "Boost priced",
            extra={"account_id": account_id, "count": count, "price": price},
        )
        return BoostQuote(count=count, is_free=price == 0, price=price)

    def try_consume_team_seat(self, account_id: str) -> Account:
        return self._consume(account_id, LimitKind.TEAM)

    def release_team_seat(self, account_id: str) -> Account:
        return self._release(account_id, LimitKind.TEAM)

    def try_consume_modification(self, account_id: str, listing_id: str) -> int:
        """
        Consume one free modification on a listing.

        Returns:
            Modifications used on the listing after this one
        """
        account = self._get_account(account_id)
        profile = self._profile(account)
        cap = profile.max_free_modifications_per_listing
        if cap == 0:
            self._raise_exceeded(account, profile, LimitKind.MODIFICATIONS)

        self._ensure_modification_counter(account_id, listing_id)

        stmt = update(ListingModificationCounter).where(
            ListingModificationCounter.account_id == account_id,
            ListingModificationCounter.listing_id == listing_id,
        )
        if cap != UNLIMITED:
            stmt = stmt.where(ListingModificationCounter.modifications_used < cap)
        stmt = stmt.values(
            modifications_used=ListingModificationCounter.modifications_used + 1
        ).execution_options(synchronize_session=False)

        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self._raise_exceeded(account, profile, LimitKind.MODIFICATIONS)

        counter = self.db.get(
            ListingModificationCounter,
            (account_id, listing_id),
            populate_existing=True,
        )
        return counter.modifications_used

    # =========================================================================
    # Checks without a counter (the count lives on the listing)
    # =========================================================================

    def check_photo_upload(self, account_id: str, current_photo_count: int) -> None:
        account = self._get_account(account_id)
        if not checker.can_upload_photo(account.tier, current_photo_count):
            self._raise_exceeded(account, self._profile(account), LimitKind.PHOTOS)

    def check_quantity(self, account_id: str, quantity: int) -> None:
        account = self._get_account(account_id)
        if not checker.is_valid_quantity(account.tier, quantity):
            self._raise_exceeded(account, self._profile(account), LimitKind.QUANTITY)

    # =========================================================================
    # Tier and period management
    # =========================================================================

    def change_tier(self, account_id: str, tier: Union[Tier, str]) -> Account:
        """Overwrite the account tier (billing upgrade flow). Counters are kept."""
        new_tier = resolve_tier(tier)
        account = self._get_account(account_id)
        previous = account.tier
        self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(tier=new_tier.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(account)
        logger.info(
            "Account tier changed",
            extra={"account_id": account_id, "from_tier": previous, "to_tier": new_tier.value},
        )
        return account

    def reset_boost_period(self, account_id: Optional[str] = None) -> int:
        """
        Zero the per-period boost counter.

        Args:
            account_id: Single account, or None for every account

        Returns:
            Number of accounts reset
        """
        stmt = update(Account).where(Account.boosts_used_this_period > 0)
        if account_id is not None:
            stmt = stmt.where(Account.id == account_id)
        result = self.db.execute(
            stmt.values(boosts_used_this_period=0, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_account(self, account_id: str) -> Account:
        account = self.db.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    @staticmethod
    def _profile(account: Account) -> EntitlementProfile:
        return checker.get_profile(account.tier)

    def _consume(self, account_id: str, kind: LimitKind, amount: int = 1) -> Account:
        account = self._get_account(account_id)
        profile = self._profile(account)
        cap = profile.cap_for(kind)
        column = _COUNTER_COLUMNS[kind]

        stmt = update(Account).where(Account.id == account_id)
        if cap != UNLIMITED:
            stmt = stmt.where(column + amount <= cap)
        stmt = stmt.values(
            {column.key: column + amount, "updated_at": utcnow()}
        ).execution_options(synchronize_session=False)

        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self._raise_exceeded(account, profile, kind)

        self.db.refresh(account)
        logger.debug(
            "Quota consumed",
            extra={
                "account_id": account_id,
                "limit_kind": kind.value,
                "amount": amount,
                "used": getattr(account, column.key),
            },
        )
        return account

    def _release(self, account_id: str, kind: LimitKind, amount: int = 1) -> Account:
        account = self._get_account(account_id)
        column = _COUNTER_COLUMNS[kind]
        result = self.db.execute(
            update(Account)
            .where(Account.id == account_id, column >= amount)
            .values({column.key: column - amount, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(
                f"No {kind.value} usage to release",
                details={"account_id": account_id, "limit_kind": kind.value},
            )
        self.db.refresh(account)
        return account

    def _ensure_modification_counter(self, account_id: str, listing_id: str) -> None:
        if self.db.get(ListingModificationCounter, (account_id, listing_id)) is not None:
            return
        try:
            with self.db.begin_nested():
                self.db.add(ListingModificationCounter(
                    account_id=account_id,
                    listing_id=listing_id,
                    modifications_used=0,
                ))
        except IntegrityError:
            # Created concurrently; the conditional update below handles it
            logger.debug(
                "Modification counter already exists",
                extra={"account_id": account_id, "listing_id": listing_id},
            )

    def _raise_exceeded(self, account: Account, profile: EntitlementProfile, kind: LimitKind) -> None:
        logger.warning(
            "Quota exceeded",
            extra={
                "account_id": account.id,
                "tier": profile.tier.value,
                "limit_kind": kind.value,
            },
        )
        raise QuotaExceededError(
            kind.value,
            profile.tier.value,
            checker.error_message_for(profile.tier, kind),
        )
