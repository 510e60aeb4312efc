"""
Loads the tier catalog, from TIER_CATALOG_PATH when set, with reload support.

File shape:
    {"tiers": {"free": {"display_name": "Free", "max_active_listings": 5, ...}, ...}}
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional, Union

from marketplace.config import settings
from marketplace.entitlements.catalog import (
    DEFAULT_CATALOG,
    EntitlementCatalog,
    EntitlementProfile,
    Tier,
)

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = {f.name for f in fields(EntitlementProfile)} - {"tier"}
_REQUIRED_FIELDS = {
    f.name
    for f in fields(EntitlementProfile)
    if f.name not in ("tier", "badge_type", "listing_lifetime_days", "unlimited_photo_listings")
}

_lock = RLock()
_catalog: Optional[EntitlementCatalog] = None


def load_catalog(path: Union[str, Path]) -> EntitlementCatalog:
    """Read and validate a catalog file. Raises ValueError on any shape problem."""
    with Path(path).open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    return parse_catalog(raw)


def parse_catalog(raw: dict) -> EntitlementCatalog:
    if not isinstance(raw, dict):
        raise ValueError("tier catalog must contain a top-level object")
    tiers_raw = raw.get("tiers")
    if not isinstance(tiers_raw, dict):
        raise ValueError("tier catalog must include an object field named 'tiers'")

    profiles: List[EntitlementProfile] = []
    for tier_key, data in tiers_raw.items():
        try:
            tier = Tier(str(tier_key).strip().lower())
        except ValueError:
            raise ValueError(f"unknown tier in catalog: {tier_key!r}") from None
        if not isinstance(data, dict):
            raise ValueError(f"tier '{tier_key}' must be an object")

        unknown = set(data) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"tier '{tier_key}' has unknown fields: {sorted(unknown)}")
        missing = _REQUIRED_FIELDS - set(data)
        if missing:
            raise ValueError(f"tier '{tier_key}' is missing fields: {sorted(missing)}")

        profiles.append(EntitlementProfile(tier=tier, **data))

    return EntitlementCatalog(profiles)


def get_catalog() -> EntitlementCatalog:
    """Return the active catalog, loading it on first use."""
    global _catalog
    with _lock:
        if _catalog is None:
            _catalog = _load_configured()
        return _catalog


def reload_catalog() -> EntitlementCatalog:
    """Re-read the configured catalog (for safe process restart workflows)."""
    global _catalog
    parsed = _load_configured()
    with _lock:
        _catalog = parsed
    return parsed


def set_catalog(catalog: Optional[EntitlementCatalog]) -> None:
    """Install a catalog explicitly; None restores lazy loading."""
    global _catalog
    with _lock:
        _catalog = catalog


def _load_configured() -> EntitlementCatalog:
    path = settings.TIER_CATALOG_PATH
    if not path:
        return DEFAULT_CATALOG
    catalog = load_catalog(path)
    logger.info("Loaded tier catalog", extra={"path": path})
    return catalog


def catalog_as_dict(catalog: Optional[EntitlementCatalog] = None) -> Dict[str, dict]:
    active = catalog or get_catalog()
    return {p.tier.value: p.to_dict() for p in active.profiles()}
