"""
Subscription entitlements.

- catalog: Tier, LimitKind and the read-only EntitlementProfile per tier
- loader: catalog loading from TIER_CATALOG_PATH with reload support
- checker: pure predicates (can_create_listing, boost_price, error_message_for, ...)
- quota: QuotaService, atomic check-and-increment of usage counters
- errors: QuotaExceededError, UnknownTierError

Import submodules directly; models import the catalog, so this package
re-exports nothing.
"""
