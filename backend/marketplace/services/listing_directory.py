"""
Listing collaborator.

The reservation workflow only needs to know whether a listing can be booked
and who owns it, and to record a sale once a reservation is paid.
"""

import logging
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.models.base import utcnow
from marketplace.models.listing import Listing
from marketplace.platform.errors import NotFoundError

logger = logging.getLogger(__name__)


class ListingDirectory(Protocol):
    """Read access to listings plus sale recording. Unknown ids raise NotFoundError."""

    def is_active(self, listing_id: str) -> bool: ...

    def is_sold(self, listing_id: str) -> bool: ...

    def owner_of(self, listing_id: str) -> str: ...

    def record_sale(self, listing_id: str) -> bool: ...


class SqlListingDirectory:
    """ListingDirectory over the listings table in the caller's session."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get(self, listing_id: str) -> Listing:
        listing = self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing", listing_id)
        return listing

    def is_active(self, listing_id: str) -> bool:
        return bool(self._get(listing_id).is_active)

    def is_sold(self, listing_id: str) -> bool:
        listing = self._get(listing_id)
        return bool(listing.is_sold) or listing.available_quantity <= 0

    def owner_of(self, listing_id: str) -> str:
        return self._get(listing_id).owner_id

    def record_sale(self, listing_id: str) -> bool:
        """
        Count one unit as sold; mark the listing sold out when none remain.

        Returns:
            True if this sale exhausted the listing
        """
        listing = self._get(listing_id)
        now = utcnow()
        self.db.execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.sold_quantity < Listing.quantity)
            .values(sold_quantity=Listing.sold_quantity + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        sold_out = self.db.execute(
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.sold_quantity >= Listing.quantity,
                Listing.is_sold.is_(False),
            )
            .values(is_sold=True, is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        self.db.refresh(listing)

        if sold_out:
            logger.info("Listing sold out", extra={"listing_id": listing_id})
        return sold_out
