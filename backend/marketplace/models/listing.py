"""
Listing model.

Listings are owned by the listing collaborator; the reservation workflow
only reads availability and ownership and records sales.
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class Listing(Base, TimestampMixin):
    """A classified ad offering one or more units of an item."""

    __tablename__ = "listings"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    owner_id = Column(String(255), ForeignKey("accounts.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)

    price = Column(Integer, nullable=True, comment="Asking price in the smallest currency unit")

    quantity = Column(Integer, nullable=False, default=1)
    sold_quantity = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    is_sold = Column(Boolean, nullable=False, default=False)

    is_featured = Column(Boolean, nullable=False, default=False)
    featured_until = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_listings_quantity"),
        CheckConstraint("sold_quantity >= 0", name="ck_listings_sold_quantity"),
    )

    @property
    def available_quantity(self) -> int:
        return max(0, (self.quantity or 1) - (self.sold_quantity or 0))

    def __repr__(self) -> str:
        return (
            f"<Listing(id={self.id}, owner_id={self.owner_id}, "
            f"active={self.is_active}, sold={self.is_sold})>"
        )
