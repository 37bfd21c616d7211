"""Domain models for rs_exchange — pure dataclasses, no SQLAlchemy dependency.

Relations are held as integer ids and resolved through the repositories,
never as embedded object references.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from src.rs_common.enums import DemandStatus, OfferStatus


@dataclass
class Association:
    name: str
    representer_id: int | None = None
    id: int | None = None


@dataclass
class Member:
    name: str
    association_id: int | None = None
    id: int | None = None


@dataclass
class Category:
    name: str
    id: int | None = None


@dataclass(frozen=True)
class OfferCategory:
    """Join record between an offer and one of its categories."""

    offer_id: int
    category_id: int


@dataclass
class Offer:
    association_id: int
    name: str
    description: str
    price: Decimal
    created_at: datetime
    status: OfferStatus = OfferStatus.OPEN
    closed_at: datetime | None = None
    category_ids: list[int] = field(default_factory=list)
    id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.status == OfferStatus.OPEN

    def category_links(self) -> list[OfferCategory]:
        if self.id is None:
            return []
        return [OfferCategory(self.id, cid) for cid in self.category_ids]


@dataclass
class Demand:
    offer_id: int
    demander_id: int
    created_at: datetime
    status: DemandStatus = DemandStatus.PENDING
    id: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == DemandStatus.PENDING

    @property
    def queue_key(self) -> tuple[datetime, int]:
        """Queue order: oldest first, ties broken by identity-assignment order."""
        return (self.created_at, self.id or 0)
