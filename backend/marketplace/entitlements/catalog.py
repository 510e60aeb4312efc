"""
Entitlement catalog: one read-only profile per subscription tier.

UNLIMITED (-1) overrides any numeric cap. Prices are integers in the smallest
currency unit (Ariary).
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from marketplace.entitlements.errors import UnknownTierError

UNLIMITED = -1

# Boosts bought in a batch of this size are charged the bundle price
BOOST_BUNDLE_SIZE = 5


class Tier(str, enum.Enum):
    """Subscription tier (pack) of an account."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class LimitKind(str, enum.Enum):
    """Closed set of limits that can be hit."""
    ADS = "ads"
    PHOTOS = "photos"
    MODIFICATIONS = "modifications"
    FEATURED = "featured"
    BOOSTS = "boosts"
    TEAM = "team"
    QUANTITY = "quantity"


class BadgeType(str, enum.Enum):
    NONE = "none"
    VERIFIED_SELLER = "verified_seller"
    PREMIUM_BUSINESS = "premium_business"


@dataclass(frozen=True)
class EntitlementProfile:
    """Limits and capabilities granted by a tier."""

    tier: Tier
    display_name: str
    max_active_listings: int
    max_photos_per_listing: int
    max_quantity_per_listing: int
    max_featured_slots: int
    featured_duration_days: int
    max_free_modifications_per_listing: int
    free_boosts_per_period: int
    boost_unit_price: int
    boost_bundle_price: int
    has_verified_badge: bool
    has_detailed_statistics: bool
    can_manage_team: bool
    max_team_members: int
    badge_type: BadgeType = BadgeType.NONE
    listing_lifetime_days: Optional[int] = None
    # Listings allowed to exceed max_photos_per_listing
    unlimited_photo_listings: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "tier", Tier(self.tier))
        object.__setattr__(self, "badge_type", BadgeType(self.badge_type))
        for name in (
            "max_active_listings",
            "max_photos_per_listing",
            "max_quantity_per_listing",
            "max_featured_slots",
            "max_free_modifications_per_listing",
            "free_boosts_per_period",
            "max_team_members",
            "unlimited_photo_listings",
        ):
            value = getattr(self, name)
            if value < 0 and value != UNLIMITED:
                raise ValueError(f"{name} must be >= 0 or UNLIMITED, got {value}")
        if self.boost_unit_price < 0 or self.boost_bundle_price < 0:
            raise ValueError("boost prices must be >= 0")
        if self.featured_duration_days < 0:
            raise ValueError("featured_duration_days must be >= 0")

    def cap_for(self, limit_kind: LimitKind) -> int:
        """Numeric cap for a limit kind (UNLIMITED or >= 0)."""
        if limit_kind is LimitKind.ADS:
            return self.max_active_listings
        if limit_kind is LimitKind.PHOTOS:
            return self.max_photos_per_listing
        if limit_kind is LimitKind.MODIFICATIONS:
            return self.max_free_modifications_per_listing
        if limit_kind is LimitKind.FEATURED:
            return self.max_featured_slots
        if limit_kind is LimitKind.BOOSTS:
            return self.free_boosts_per_period
        if limit_kind is LimitKind.TEAM:
            return self.max_team_members if self.can_manage_team else 0
        return self.max_quantity_per_listing

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tier"] = self.tier.value
        data["badge_type"] = self.badge_type.value
        return data


class EntitlementCatalog:
    """Immutable tier -> profile mapping. Exactly one profile per tier."""

    def __init__(self, profiles: Iterable[EntitlementProfile]):
        by_tier: Dict[Tier, EntitlementProfile] = {}
        for profile in profiles:
            if profile.tier in by_tier:
                raise ValueError(f"duplicate profile for tier '{profile.tier.value}'")
            by_tier[profile.tier] = profile
        missing = [t.value for t in Tier if t not in by_tier]
        if missing:
            raise ValueError(f"missing profiles for tiers: {', '.join(missing)}")
        self._profiles: Mapping[Tier, EntitlementProfile] = MappingProxyType(by_tier)

    def get(self, tier: Union[Tier, str]) -> EntitlementProfile:
        return self._profiles[resolve_tier(tier)]

    def profiles(self) -> Tuple[EntitlementProfile, ...]:
        return tuple(self._profiles[t] for t in Tier)


def resolve_tier(value: Union[Tier, str, None]) -> Tier:
    """Parse a stored tier value. Unknown values raise UnknownTierError."""
    if isinstance(value, Tier):
        return value
    try:
        return Tier(str(value).strip().lower())
    except ValueError:
        raise UnknownTierError(value) from None


DEFAULT_PROFILES: Tuple[EntitlementProfile, ...] = (
    EntitlementProfile(
        tier=Tier.FREE,
        display_name="Free",
        max_active_listings=5,
        max_photos_per_listing=3,
        max_quantity_per_listing=1,
        max_featured_slots=0,
        featured_duration_days=0,
        max_free_modifications_per_listing=0,
        free_boosts_per_period=0,
        boost_unit_price=2000,
        boost_bundle_price=8000,
        has_verified_badge=False,
        has_detailed_statistics=False,
        can_manage_team=False,
        max_team_members=1,
        listing_lifetime_days=30,  # must be boosted to stay visible afterwards
    ),
    EntitlementProfile(
        tier=Tier.STARTER,
        display_name="Starter",
        max_active_listings=20,
        max_photos_per_listing=10,
        max_quantity_per_listing=10,
        max_featured_slots=5,
        featured_duration_days=7,
        max_free_modifications_per_listing=5,
        free_boosts_per_period=0,
        boost_unit_price=2000,
        boost_bundle_price=8000,
        has_verified_badge=False,
        has_detailed_statistics=False,
        can_manage_team=False,
        max_team_members=1,
    ),
    EntitlementProfile(
        tier=Tier.PRO,
        display_name="Pro",
        max_active_listings=50,
        max_photos_per_listing=20,
        max_quantity_per_listing=20,
        max_featured_slots=10,
        featured_duration_days=14,
        max_free_modifications_per_listing=15,
        free_boosts_per_period=5,
        boost_unit_price=2000,
        boost_bundle_price=8000,
        has_verified_badge=True,
        has_detailed_statistics=True,
        can_manage_team=False,
        max_team_members=1,
        badge_type=BadgeType.VERIFIED_SELLER,
        unlimited_photo_listings=10,
    ),
    EntitlementProfile(
        tier=Tier.ENTERPRISE,
        display_name="Enterprise",
        max_active_listings=UNLIMITED,
        max_photos_per_listing=UNLIMITED,
        max_quantity_per_listing=UNLIMITED,
        max_featured_slots=UNLIMITED,
        featured_duration_days=30,
        max_free_modifications_per_listing=UNLIMITED,
        free_boosts_per_period=UNLIMITED,
        boost_unit_price=0,
        boost_bundle_price=0,
        has_verified_badge=True,
        has_detailed_statistics=True,
        can_manage_team=True,
        max_team_members=5,
        badge_type=BadgeType.PREMIUM_BUSINESS,
        unlimited_photo_listings=UNLIMITED,
    ),
)

DEFAULT_CATALOG = EntitlementCatalog(DEFAULT_PROFILES)
