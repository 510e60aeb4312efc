"""
Entitlement error hierarchy.

Provides:
- QuotaExceededError: a tier cap was reached (carries the limit kind)
- UnknownTierError: tier value not present in the catalog
"""

from typing import Optional

from fastapi import status

from marketplace.platform.errors import AppError, NotFoundError


class QuotaExceededError(AppError):
    """
    Raised when an entitlement cap is reached.

    The message is the human-readable explanation from error_message_for so
    the UI can show it verbatim.
    """

    def __init__(self, limit_kind: str, tier: Optional[str], message: str):
        self.limit_kind = limit_kind
        self.tier = tier
        super().__init__(
            code="QUOTA_EXCEEDED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details={"limit_kind": limit_kind, "tier": tier},
        )


class UnknownTierError(NotFoundError):
    """Raised for a tier value with no profile. Never downgraded silently."""

    def __init__(self, tier: object):
        super().__init__("Subscription tier", str(tier))
        self.tier = tier
