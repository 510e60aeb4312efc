"""
Entitlement checks: pure predicates and derived values for a tier.

Nothing here mutates state. Counter consumption goes through QuotaService,
which performs the check and the increment as one conditional update.
"""

from typing import Dict, Optional, Union

from marketplace.entitlements.catalog import (
    BOOST_BUNDLE_SIZE,
    UNLIMITED,
    EntitlementProfile,
    LimitKind,
    Tier,
)
from marketplace.entitlements.errors import UnknownTierError
from marketplace.entitlements.loader import get_catalog
from marketplace.platform.errors import ValidationError

TierLike = Union[Tier, str]

GENERIC_LIMIT_MESSAGE = "Limit reached for your subscription pack."


def get_profile(tier: TierLike) -> EntitlementProfile:
    """Profile for the tier as read right now. Unknown tiers raise UnknownTierError."""
    return get_catalog().get(tier)


def _within_cap(cap: int, used: int) -> bool:
    if cap == UNLIMITED:
        return True
    return used < cap


def can_create_listing(tier: TierLike, active_count: int) -> bool:
    return _within_cap(get_profile(tier).max_active_listings, active_count)


def can_upload_photo(tier: TierLike, current_photo_count: int, photo_cap_lifted: bool = False) -> bool:
    """photo_cap_lifted marks a listing counted against unlimited_photo_listings."""
    if photo_cap_lifted:
        return True
    return _within_cap(get_profile(tier).max_photos_per_listing, current_photo_count)


def can_lift_photo_cap(tier: TierLike, lifted_listing_count: int) -> bool:
    """Whether one more listing may exceed the per-listing photo cap."""
    return _within_cap(get_profile(tier).unlimited_photo_listings, lifted_listing_count)


def can_modify_listing(tier: TierLike, modifications_used: int) -> bool:
    """False when the tier has no free modifications, True when unlimited."""
    return _within_cap(get_profile(tier).max_free_modifications_per_listing, modifications_used)


def can_feature_listing(tier: TierLike, featured_used: int) -> bool:
    return _within_cap(get_profile(tier).max_featured_slots, featured_used)


def can_boost_for_free(tier: TierLike, boosts_used: int) -> bool:
    return _within_cap(get_profile(tier).free_boosts_per_period, boosts_used)


def can_add_team_member(tier: TierLike, current_members: int) -> bool:
    profile = get_profile(tier)
    if not profile.can_manage_team:
        return False
    return _within_cap(profile.max_team_members, current_members)


def is_valid_quantity(tier: TierLike, quantity: int) -> bool:
    """Units offered in a single listing."""
    cap = get_profile(tier).max_quantity_per_listing
    if cap == UNLIMITED:
        return True
    return 1 <= quantity <= cap


def featured_duration_days(tier: TierLike) -> int:
    return get_profile(tier).featured_duration_days


def boost_price(tier: TierLike, count: int) -> int:
    """
    Price of `count` paid boosts.

    Free when the tier's unit price is 0; the bundle price once count reaches
    BOOST_BUNDLE_SIZE; otherwise unit price times count.
    """
    if count < 1:
        raise ValidationError("Boost count must be at least 1", details={"count": count})
    profile = get_profile(tier)
    if profile.boost_unit_price == 0:
        return 0
    if count >= BOOST_BUNDLE_SIZE:
        return profile.boost_bundle_price
    return profile.boost_unit_price * count


def remaining(tier: TierLike, limit_kind: LimitKind, used: int) -> Optional[int]:
    """Remaining quota for a limit; None means unlimited."""
    cap = get_profile(tier).cap_for(LimitKind(limit_kind))
    if cap == UNLIMITED:
        return None
    return max(0, cap - used)


def error_message_for(tier: TierLike, limit_kind: Union[LimitKind, str]) -> str:
    """
    Human-readable explanation for a limit that was hit.

    Unknown tiers and unknown limit kinds get GENERIC_LIMIT_MESSAGE instead
    of an error.
    """
    try:
        profile = get_profile(tier)
        kind = LimitKind(limit_kind)
    except (UnknownTierError, ValueError):
        return GENERIC_LIMIT_MESSAGE

    name = profile.display_name
    if kind is LimitKind.ADS:
        return (
            f"Limit reached: you can have at most {profile.max_active_listings} active listings "
            f"with the {name} pack. Upgrade to a higher pack to raise this limit."
        )
    if kind is LimitKind.PHOTOS:
        return (
            f"Limit reached: you can add at most {profile.max_photos_per_listing} photos "
            f"per listing with the {name} pack."
        )
    if kind is LimitKind.MODIFICATIONS:
        return (
            f"Limit reached: you can modify this listing "
            f"{profile.max_free_modifications_per_listing} times with the {name} pack."
        )
    if kind is LimitKind.FEATURED:
        return (
            f"Limit reached: you have used all of your featured slots "
            f"({profile.max_featured_slots}) with the {name} pack."
        )
    if kind is LimitKind.BOOSTS:
        if profile.boost_unit_price == 0:
            return f"Boosts are included with the {name} pack."
        return f"You need to pay {profile.boost_unit_price} Ar to boost this listing."
    if kind is LimitKind.TEAM:
        if not profile.can_manage_team:
            return (
                f"Team management is not available with the {name} pack. "
                f"Upgrade to a higher pack to add members."
            )
        return f"Limit reached: you can have at most {profile.max_team_members} members in your team."
    return (
        f"Invalid quantity: at most {profile.max_quantity_per_listing} units per listing "
        f"with the {name} pack."
    )


def usage_summary(
    tier: TierLike,
    *,
    active_listing_count: int,
    featured_slots_used: int,
    boosts_used_this_period: int,
    team_member_count: int,
) -> Dict[str, object]:
    """Limits, usage and remaining quota for the "my limits" view."""
    profile = get_profile(tier)
    usage = {
        LimitKind.ADS.value: active_listing_count,
        LimitKind.FEATURED.value: featured_slots_used,
        LimitKind.BOOSTS.value: boosts_used_this_period,
        LimitKind.TEAM.value: team_member_count,
    }
    return {
        "tier": profile.tier.value,
        "display_name": profile.display_name,
        "badge_type": profile.badge_type.value,
        "has_verified_badge": profile.has_verified_badge,
        "has_detailed_statistics": profile.has_detailed_statistics,
        "limits": {kind.value: profile.cap_for(kind) for kind in LimitKind},
        "usage": usage,
        "remaining": {
            key: remaining(profile.tier, LimitKind(key), used) for key, used in usage.items()
        },
    }
