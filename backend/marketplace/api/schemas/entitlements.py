"""Pydantic schemas for the entitlements API."""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from marketplace.entitlements.catalog import LimitKind


class UsageSummaryResponse(BaseModel):
    tier: str
    display_name: str
    badge_type: str
    has_verified_badge: bool
    has_detailed_statistics: bool
    limits: Dict[str, int] = Field(..., description="Caps per limit kind; -1 means unlimited")
    usage: Dict[str, int]
    remaining: Dict[str, Optional[int]] = Field(..., description="null means unlimited")


class CanDoRequest(BaseModel):
    limit_kind: LimitKind
    current: Optional[int] = Field(
        None,
        ge=0,
        description=(
            "Current usage for limits counted on the listing (photos, modifications) "
            "or the requested quantity; account counters are read server side"
        ),
    )


class CanDoResponse(BaseModel):
    allowed: bool
    limit_kind: LimitKind
    remaining: Optional[int] = None
    message: Optional[str] = Field(None, description="Why the action is refused")


class BoostQuoteRequest(BaseModel):
    count: int = Field(1, ge=1, description="Boosts requested")


class BoostQuoteResponse(BaseModel):
    count: int
    is_free: bool
    price: int = Field(..., description="Price to pay in Ar; 0 when covered by the allowance")
