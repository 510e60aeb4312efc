"""
Entitlements API routes.

Read-only views of what the caller's tier allows, plus boost quoting.
Enforcement happens where usage is consumed (QuotaService); these endpoints
let the client explain limits before the user hits them.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.api.dependencies.db import get_db
from marketplace.api.dependencies.identity import get_account_id
from marketplace.api.schemas.entitlements import (
    BoostQuoteRequest,
    BoostQuoteResponse,
    CanDoRequest,
    CanDoResponse,
    UsageSummaryResponse,
)
from marketplace.entitlements import checker
from marketplace.entitlements.catalog import LimitKind
from marketplace.entitlements.loader import catalog_as_dict
from marketplace.entitlements.quota import QuotaService
from marketplace.models.account import Account
from marketplace.platform.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlements", tags=["entitlements"])

# Limits whose usage is an account counter rather than caller-supplied
_ACCOUNT_COUNTERS = {
    LimitKind.ADS: "active_listing_count",
    LimitKind.FEATURED: "featured_slots_used",
    LimitKind.BOOSTS: "boosts_used_this_period",
    LimitKind.TEAM: "team_member_count",
}

_PREDICATES = {
    LimitKind.ADS: checker.can_create_listing,
    LimitKind.PHOTOS: checker.can_upload_photo,
    LimitKind.MODIFICATIONS: checker.can_modify_listing,
    LimitKind.FEATURED: checker.can_feature_listing,
    LimitKind.BOOSTS: checker.can_boost_for_free,
    LimitKind.TEAM: checker.can_add_team_member,
    LimitKind.QUANTITY: checker.is_valid_quantity,
}


def _get_account(db: Session, account_id: str) -> Account:
    account = db.get(Account, account_id)
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


@router.get("/tiers", response_model=dict)
def list_tiers() -> dict:
    """Every tier profile; -1 means unlimited."""
    return {"tiers": catalog_as_dict()}


@router.get("/me", response_model=UsageSummaryResponse)
def get_my_entitlements(
    account_id: str = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    account = _get_account(db, account_id)
    return checker.usage_summary(
        account.tier,
        active_listing_count=account.active_listing_count,
        featured_slots_used=account.featured_slots_used,
        boosts_used_this_period=account.boosts_used_this_period,
        team_member_count=account.team_member_count,
    )


@router.post("/can-do", response_model=CanDoResponse)
def can_do(
    body: CanDoRequest,
    account_id: str = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    account = _get_account(db, account_id)
    kind = body.limit_kind

    if kind in _ACCOUNT_COUNTERS:
        used = getattr(account, _ACCOUNT_COUNTERS[kind])
    elif body.current is None:
        raise ValidationError(
            f"'current' is required for {kind.value}",
            details={"limit_kind": kind.value},
        )
    else:
        used = body.current

    allowed = _PREDICATES[kind](account.tier, used)
    remaining = None if kind is LimitKind.QUANTITY else checker.remaining(account.tier, kind, used)
    return CanDoResponse(
        allowed=allowed,
        limit_kind=kind,
        remaining=remaining,
        message=None if allowed else checker.error_message_for(account.tier, kind),
    )


@router.post("/boost-quote", response_model=BoostQuoteResponse)
def quote_boost(
    body: BoostQuoteRequest,
    account_id: str = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    """
    Consume free boosts when the allowance covers the request; otherwise
    return the price without consuming anything.
    """
    quote = QuotaService(db).quote_boost(account_id, body.count)
    return BoostQuoteResponse(count=quote.count, is_free=quote.is_free, price=quote.price)
