"""ExchangeService: offer/demand lifecycle and queue ranking.

Every operation receives the unit-of-work handle ``db`` first. Input is
validated before any lookup; mutating operations then run inside one
transaction that is committed at the end and rolled back on any error,
so a failed call leaves no partial writes behind. Read-only operations
(listings, rank, statistics) never commit.

Timestamps come from the injected clock so queue order is deterministic.
"""

import logging
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import Any

from src.rs_common.datetime_utils import Clock, utc_now
from src.rs_common.enums import DemandStatus, OfferStatus
from src.rs_common.errors import (
    AssociationNotFoundError,
    CategoriesNotFoundError,
    DemandNotCancellableError,
    DemandNotFoundError,
    DemandWithoutOfferError,
    DuplicatePendingDemandError,
    InvalidArgumentError,
    MemberNotFoundError,
    MemberWithoutAssociationError,
    NotAuthorizedError,
    OfferNotFoundError,
    OfferNotOpenError,
    RepresenterNotInAssociationError,
)
from src.rs_exchange.domain.models import (
    Association,
    Category,
    Demand,
    Member,
    Offer,
)
from src.rs_exchange.domain.repository import (
    AssociationRepositoryProtocol,
    CategoryRepositoryProtocol,
    DemandRepositoryProtocol,
    MemberRepositoryProtocol,
    OfferRepositoryProtocol,
    UnitOfWork,
)
from src.rs_exchange.infrastructure.persistence import (
    AssociationRepository,
    CategoryRepository,
    DemandRepository,
    MemberRepository,
    OfferRepository,
)

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 64  # associations / members / offers columns are VARCHAR(64)

# offers.price is NUMERIC(12, 2)
PRICE_SCALE = Decimal("0.01")
PRICE_LIMIT = Decimal("1e10")


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def _require_id(value: int | None, field: str) -> int:
    if value is None or value <= 0:
        raise InvalidArgumentError(f"{field} is invalid: {value}")
    return value


def _require_name(value: str | None, field: str, max_length: int | None = None) -> str:
    if value is None or not value.strip():
        raise InvalidArgumentError(f"{field} is null or blank")
    name = value.strip()
    if max_length is not None and len(name) > max_length:
        raise InvalidArgumentError(f"{field} exceeds {max_length} characters")
    return name


def _require_price(value: Any) -> Decimal:
    if value is None:
        raise InvalidArgumentError("Offer price is required")
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgumentError(f"Offer price is not a number: {value!r}") from None
    if not price.is_finite():
        raise InvalidArgumentError(f"Offer price is not a number: {value!r}")
    if price < 0:
        raise InvalidArgumentError("Offer price cannot be negative")
    if price >= PRICE_LIMIT:
        raise InvalidArgumentError(f"Offer price must be below {PRICE_LIMIT:f}")
    if price.quantize(PRICE_SCALE) != price:
        raise InvalidArgumentError(f"Offer price has more than 2 decimal places: {value!r}")
    return price


def _distinct_ids(ids: Iterable[int | None]) -> list[int]:
    """Drop None and duplicates, first occurrence wins."""
    return list(dict.fromkeys(i for i in ids if i is not None))


@asynccontextmanager
async def _transaction(db: UnitOfWork) -> AsyncIterator[None]:
    try:
        yield
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ExchangeService:
    """Stateless service; instantiate once and reuse."""

    def __init__(
        self,
        associations: AssociationRepositoryProtocol | None = None,
        members: MemberRepositoryProtocol | None = None,
        categories: CategoryRepositoryProtocol | None = None,
        offers: OfferRepositoryProtocol | None = None,
        demands: DemandRepositoryProtocol | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._associations: AssociationRepositoryProtocol = associations or AssociationRepository()
        self._members: MemberRepositoryProtocol = members or MemberRepository()
        self._categories: CategoryRepositoryProtocol = categories or CategoryRepository()
        self._offers: OfferRepositoryProtocol = offers or OfferRepository()
        self._demands: DemandRepositoryProtocol = demands or DemandRepository()
        self._clock = clock

    # --- Associations / members / categories ---

    async def create_association(self, db: UnitOfWork, name: str | None) -> Association:
        clean = _require_name(name, "Association name", NAME_MAX_LENGTH)
        async with _transaction(db):
            return await self._associations.save(db, Association(name=clean))

    async def add_member(
        self, db: UnitOfWork, association_id: int | None, name: str | None
    ) -> Member:
        association_id = _require_id(association_id, "associationId")
        clean = _require_name(name, "Member name", NAME_MAX_LENGTH)
        async with _transaction(db):
            association = await self._associations.get_by_id(db, association_id)
            if association is None:
                raise AssociationNotFoundError(association_id)
            return await self._members.save(
                db, Member(name=clean, association_id=association.id)
            )

    async def create_member(
        self, db: UnitOfWork, name: str | None, association_id: int | None = None
    ) -> Member:
        """Create a member, optionally unattached to any association."""
        clean = _require_name(name, "Member name", NAME_MAX_LENGTH)
        if association_id is not None:
            _require_id(association_id, "associationId")
        async with _transaction(db):
            if association_id is not None:
                if await self._associations.get_by_id(db, association_id) is None:
                    raise AssociationNotFoundError(association_id)
            return await self._members.save(
                db, Member(name=clean, association_id=association_id)
            )

    async def assign_representer(
        self, db: UnitOfWork, association_id: int | None, member_id: int | None
    ) -> Association:
        association_id = _require_id(association_id, "associationId")
        member_id = _require_id(member_id, "memberId")
        async with _transaction(db):
            association = await self._associations.get_by_id(db, association_id)
            if association is None:
                raise AssociationNotFoundError(association_id)
            member = await self._members.get_by_id(db, member_id)
            if member is None:
                raise MemberNotFoundError(member_id)
            if member.association_id != association.id:
                raise RepresenterNotInAssociationError(member_id, association_id)
            association.representer_id = member.id
            return await self._associations.save(db, association)

    async def create_category(self, db: UnitOfWork, name: str | None) -> Category:
        clean = _require_name(name, "Category name")
        async with _transaction(db):
            return await self._categories.save(db, Category(name=clean))

    # --- Offers ---

    async def create_offer(
        self,
        db: UnitOfWork,
        contact_member_id: int | None,
        name: str | None,
        description: str | None,
        price: Decimal | int | str | None,
        category_ids: list[int | None] | None,
    ) -> Offer:
        contact_member_id = _require_id(contact_member_id, "contactId")
        clean_name = _require_name(name, "Offer name", NAME_MAX_LENGTH)
        clean_price = _require_price(price)
        if not category_ids:
            raise InvalidArgumentError("categoryIds is required")
        distinct_ids = _distinct_ids(category_ids)
        if not distinct_ids:
            raise InvalidArgumentError("categoryIds holds no usable id")

        async with _transaction(db):
            contact = await self._members.get_by_id(db, contact_member_id)
            if contact is None:
                raise MemberNotFoundError(contact_member_id)
            if contact.association_id is None:
                raise MemberWithoutAssociationError(contact_member_id)

            categories = await self._categories.get_by_ids(db, distinct_ids)
            found = {c.id for c in categories}
            missing = [cid for cid in distinct_ids if cid not in found]
            if missing:
                raise CategoriesNotFoundError(missing)

            offer = Offer(
                association_id=contact.association_id,
                name=clean_name,
                description=(description or "").strip(),
                price=clean_price,
                created_at=self._clock(),
                status=OfferStatus.OPEN,
                category_ids=distinct_ids,
            )
            offer = await self._offers.save(db, offer)
        logger.info(
            "Offer %s created by member %s for association %s",
            offer.id, contact_member_id, offer.association_id,
        )
        return offer

    async def list_offers(self, db: UnitOfWork) -> list[Offer]:
        # No status filter: ARCHIVED offers are listed too.
        return await self._offers.list_all(db)

    async def list_offers_by_category(
        self, db: UnitOfWork, category_id: int | None
    ) -> list[Offer]:
        category_id = _require_id(category_id, "categoryId")
        return await self._offers.list_by_category(db, category_id)

    async def validate_offer(
        self, db: UnitOfWork, contact_member_id: int | None, offer_id: int | None
    ) -> Demand | None:
        """Close the offer and hand it to the oldest PENDING demand.

        The first PENDING demand in queue order is APPROVED and every later
        PENDING one REJECTED; demands in other states are left as they are.
        Any member of the owning association may validate.
        """
        contact_member_id = _require_id(contact_member_id, "contactMemberId")
        offer_id = _require_id(offer_id, "offerId")

        async with _transaction(db):
            contact = await self._members.get_by_id(db, contact_member_id)
            if contact is None:
                raise MemberNotFoundError(contact_member_id)
            offer = await self._offers.get_by_id(db, offer_id)
            if offer is None:
                raise OfferNotFoundError(offer_id)
            if not offer.is_open:
                raise OfferNotOpenError(offer_id, offer.status.value)
            if (
                offer.association_id is None
                or contact.association_id is None
                or offer.association_id != contact.association_id
            ):
                raise NotAuthorizedError(contact_member_id, offer_id)

            approved: Demand | None = None
            for demand in await self._demands.list_by_offer(db, offer_id):
                if demand.is_pending and approved is None:
                    demand.status = DemandStatus.APPROVED
                    approved = demand
                elif demand.is_pending:
                    demand.status = DemandStatus.REJECTED
                await self._demands.save(db, demand)

            offer.status = OfferStatus.CLOSED
            offer.closed_at = self._clock()
            await self._offers.save(db, offer)

        logger.info(
            "Offer %s closed by member %s, winner=%s",
            offer_id, contact_member_id, approved.id if approved else None,
        )
        return approved

    async def archive_offer(self, db: UnitOfWork, offer_id: int | None) -> Offer:
        # Allowed from any status; demands are not touched.
        offer_id = _require_id(offer_id, "offerId")
        async with _transaction(db):
            offer = await self._offers.get_by_id(db, offer_id)
            if offer is None:
                raise OfferNotFoundError(offer_id)
            previous = offer.status
            offer.status = OfferStatus.ARCHIVED
            offer.closed_at = self._clock()
            offer = await self._offers.save(db, offer)
        logger.info("Offer %s archived (was %s)", offer_id, previous.value)
        return offer

    # --- Demands ---

    async def create_demand(
        self, db: UnitOfWork, offer_id: int | None, member_id: int | None
    ) -> Demand:
        offer_id = _require_id(offer_id, "offerId")
        member_id = _require_id(member_id, "demanderId")

        async with _transaction(db):
            offer = await self._offers.get_by_id(db, offer_id)
            if offer is None:
                raise OfferNotFoundError(offer_id)
            if not offer.is_open:
                raise OfferNotOpenError(offer_id, offer.status.value)
            demander = await self._members.get_by_id(db, member_id)
            if demander is None:
                raise MemberNotFoundError(member_id)
            # The store's pending-pair constraint is the final guard under concurrency.
            if await self._demands.exists_pending(db, offer_id, member_id):
                raise DuplicatePendingDemandError(offer_id, member_id)

            demand = await self._demands.save(
                db,
                Demand(
                    offer_id=offer_id,
                    demander_id=member_id,
                    created_at=self._clock(),
                    status=DemandStatus.PENDING,
                ),
            )
        logger.debug("Demand %s created on offer %s by member %s", demand.id, offer_id, member_id)
        return demand

    async def cancel_demand(self, db: UnitOfWork, demand_id: int | None) -> Demand:
        demand_id = _require_id(demand_id, "demandId")
        async with _transaction(db):
            demand = await self._demands.get_by_id(db, demand_id)
            if demand is None:
                raise DemandNotFoundError(demand_id)
            if not demand.is_pending:
                raise DemandNotCancellableError(demand_id, demand.status.value)
            demand.status = DemandStatus.CANCELLED
            demand = await self._demands.save(db, demand)
        logger.debug("Demand %s cancelled", demand_id)
        return demand

    async def get_demand_rank(self, db: UnitOfWork, demand_id: int | None) -> int | None:
        """1-based position of the demand among its offer's PENDING demands.

        Returns None when the demand exists but is no longer PENDING: the
        rank is computed over the current queue, not the historical one.
        """
        demand_id = _require_id(demand_id, "demandId")
        demand = await self._demands.get_by_id(db, demand_id)
        if demand is None:
            raise DemandNotFoundError(demand_id)
        if demand.offer_id is None or await self._offers.get_by_id(db, demand.offer_id) is None:
            raise DemandWithoutOfferError(demand_id)

        queue = [d for d in await self._demands.list_by_offer(db, demand.offer_id) if d.is_pending]
        for position, queued in enumerate(queue, start=1):
            if queued.id == demand_id:
                return position
        return None

    async def list_offer_demands(self, db: UnitOfWork, offer_id: int | None) -> list[Demand]:
        """The offer's whole demand queue, every status, oldest first."""
        offer_id = _require_id(offer_id, "offerId")
        if await self._offers.get_by_id(db, offer_id) is None:
            raise OfferNotFoundError(offer_id)
        return await self._demands.list_by_offer(db, offer_id)

    # --- Statistics (full scan, archived and cancelled data included) ---

    async def get_offer_count_by_association(self, db: UnitOfWork) -> dict[int, int]:
        known = {a.id for a in await self._associations.list_all(db)}
        offers = await self._offers.list_all(db)
        return dict(Counter(o.association_id for o in offers if o.association_id in known))

    async def get_offer_wins_by_association(self, db: UnitOfWork) -> dict[int, int]:
        """Approved demands per association of the demanding member."""
        known = {a.id for a in await self._associations.list_all(db)}
        members = {m.id: m for m in await self._members.list_all(db)}

        wins: Counter[int] = Counter()
        for demand in await self._demands.list_all(db):
            if demand.status != DemandStatus.APPROVED:
                continue
            member = members.get(demand.demander_id)
            if member is None or member.association_id not in known:
                continue
            wins[member.association_id] += 1
        return dict(wins)
