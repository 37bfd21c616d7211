# src/rs_exchange/infrastructure/persistence.py
"""Raw SQL repositories for rs_exchange — concrete Protocol implementations.

All statements use text() SQL (no ORM). Identity comes from BIGSERIAL
columns via INSERT ... RETURNING id. The caller owns the transaction:
nothing here commits or rolls back.
"""
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.enums import DemandStatus, OfferStatus
from src.rs_common.errors import DuplicatePendingDemandError
from src.rs_exchange.domain.models import (
    Association,
    Category,
    Demand,
    Member,
    Offer,
)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_INSERT_ASSOCIATION_SQL = text("""
    INSERT INTO associations (name, representer_id)
    VALUES (:name, :representer_id)
    RETURNING id
""")

_UPDATE_ASSOCIATION_SQL = text("""
    UPDATE associations
    SET name = :name, representer_id = :representer_id, updated_at = NOW()
    WHERE id = :id
""")

_GET_ASSOCIATION_SQL = text(
    "SELECT id, name, representer_id FROM associations WHERE id = :id"
)
_LIST_ASSOCIATIONS_SQL = text(
    "SELECT id, name, representer_id FROM associations ORDER BY id"
)

_INSERT_MEMBER_SQL = text("""
    INSERT INTO members (name, association_id)
    VALUES (:name, :association_id)
    RETURNING id
""")

_UPDATE_MEMBER_SQL = text("""
    UPDATE members
    SET name = :name, association_id = :association_id, updated_at = NOW()
    WHERE id = :id
""")

_GET_MEMBER_SQL = text("SELECT id, name, association_id FROM members WHERE id = :id")
_LIST_MEMBERS_SQL = text("SELECT id, name, association_id FROM members ORDER BY id")

_INSERT_CATEGORY_SQL = text("INSERT INTO categories (name) VALUES (:name) RETURNING id")
_UPDATE_CATEGORY_SQL = text("UPDATE categories SET name = :name WHERE id = :id")
_GET_CATEGORY_SQL = text("SELECT id, name FROM categories WHERE id = :id")
_LIST_CATEGORIES_SQL = text("SELECT id, name FROM categories ORDER BY id")
_GET_CATEGORIES_BY_IDS_SQL = text("""
    SELECT id, name FROM categories
    WHERE id = ANY(CAST(string_to_array(CAST(:ids_csv AS TEXT), ',') AS BIGINT[]))
    ORDER BY id
""")

_INSERT_OFFER_SQL = text("""
    INSERT INTO offers (association_id, name, description, price, status,
        created_at, closed_at)
    VALUES (:association_id, :name, :description, :price, :status,
        :created_at, :closed_at)
    RETURNING id
""")

_UPDATE_OFFER_SQL = text("""
    UPDATE offers
    SET name = :name, description = :description, price = :price,
        status = :status, closed_at = :closed_at, updated_at = NOW()
    WHERE id = :id
""")

_LINK_OFFER_CATEGORY_SQL = text("""
    INSERT INTO offers_categories (offer_id, category_id)
    VALUES (:offer_id, :category_id)
    ON CONFLICT DO NOTHING
""")

_OFFER_COLUMNS = """
    o.id, o.association_id, o.name, o.description, o.price, o.status,
    o.created_at, o.closed_at,
    ARRAY(
        SELECT oc.category_id FROM offers_categories oc
        WHERE oc.offer_id = o.id ORDER BY oc.category_id
    ) AS category_ids
"""

_GET_OFFER_SQL = text(f"SELECT {_OFFER_COLUMNS} FROM offers o WHERE o.id = :id")
_LIST_OFFERS_SQL = text(f"SELECT {_OFFER_COLUMNS} FROM offers o ORDER BY o.id")

# EXISTS instead of JOIN keeps each offer once without DISTINCT.
_LIST_OFFERS_BY_CATEGORY_SQL = text(f"""
    SELECT {_OFFER_COLUMNS}
    FROM offers o
    WHERE EXISTS (
        SELECT 1 FROM offers_categories oc
        WHERE oc.offer_id = o.id AND oc.category_id = :category_id
    )
    ORDER BY o.id
""")

_INSERT_DEMAND_SQL = text("""
    INSERT INTO demands (offer_id, demander_id, created_at, status)
    VALUES (:offer_id, :demander_id, :created_at, :status)
    RETURNING id
""")

_UPDATE_DEMAND_SQL = text("""
    UPDATE demands SET status = :status, updated_at = NOW()
    WHERE id = :id
""")

_DEMAND_COLUMNS = "id, offer_id, demander_id, created_at, status"

_GET_DEMAND_SQL = text(f"SELECT {_DEMAND_COLUMNS} FROM demands WHERE id = :id")
_LIST_DEMANDS_SQL = text(f"SELECT {_DEMAND_COLUMNS} FROM demands ORDER BY id")
_LIST_DEMANDS_BY_OFFER_SQL = text(f"""
    SELECT {_DEMAND_COLUMNS}
    FROM demands
    WHERE offer_id = :offer_id
    ORDER BY created_at ASC, id ASC
""")

_EXISTS_PENDING_DEMAND_SQL = text("""
    SELECT EXISTS (
        SELECT 1 FROM demands
        WHERE offer_id = :offer_id
          AND demander_id = :demander_id
          AND status = 'PENDING'
    ) AS found
""")

_PENDING_DEMAND_INDEX = "uq_demands_pending"


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _row_to_association(row: Any) -> Association:
    return Association(id=row.id, name=row.name, representer_id=row.representer_id)


def _row_to_member(row: Any) -> Member:
    return Member(id=row.id, name=row.name, association_id=row.association_id)


def _row_to_category(row: Any) -> Category:
    return Category(id=row.id, name=row.name)


def _row_to_offer(row: Any) -> Offer:
    return Offer(
        id=row.id,
        association_id=row.association_id,
        name=row.name,
        description=row.description,
        price=row.price,
        status=OfferStatus(row.status),
        created_at=row.created_at,
        closed_at=row.closed_at,
        category_ids=list(row.category_ids or []),
    )


def _row_to_demand(row: Any) -> Demand:
    return Demand(
        id=row.id,
        offer_id=row.offer_id,
        demander_id=row.demander_id,
        created_at=row.created_at,
        status=DemandStatus(row.status),
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class AssociationRepository:
    async def save(self, db: AsyncSession, association: Association) -> Association:
        params = {"name": association.name, "representer_id": association.representer_id}
        if association.id is None:
            result = await db.execute(_INSERT_ASSOCIATION_SQL, params)
            association.id = result.scalar_one()
        else:
            await db.execute(_UPDATE_ASSOCIATION_SQL, {**params, "id": association.id})
        return association

    async def get_by_id(self, db: AsyncSession, association_id: int) -> Association | None:
        result = await db.execute(_GET_ASSOCIATION_SQL, {"id": association_id})
        row = result.fetchone()
        return _row_to_association(row) if row else None

    async def list_all(self, db: AsyncSession) -> list[Association]:
        result = await db.execute(_LIST_ASSOCIATIONS_SQL)
        return [_row_to_association(row) for row in result.fetchall()]


class MemberRepository:
    async def save(self, db: AsyncSession, member: Member) -> Member:
        params = {"name": member.name, "association_id": member.association_id}
        if member.id is None:
            result = await db.execute(_INSERT_MEMBER_SQL, params)
            member.id = result.scalar_one()
        else:
            await db.execute(_UPDATE_MEMBER_SQL, {**params, "id": member.id})
        return member

    async def get_by_id(self, db: AsyncSession, member_id: int) -> Member | None:
        result = await db.execute(_GET_MEMBER_SQL, {"id": member_id})
        row = result.fetchone()
        return _row_to_member(row) if row else None

    async def list_all(self, db: AsyncSession) -> list[Member]:
        result = await db.execute(_LIST_MEMBERS_SQL)
        return [_row_to_member(row) for row in result.fetchall()]


class CategoryRepository:
    async def save(self, db: AsyncSession, category: Category) -> Category:
        if category.id is None:
            result = await db.execute(_INSERT_CATEGORY_SQL, {"name": category.name})
            category.id = result.scalar_one()
        else:
            await db.execute(_UPDATE_CATEGORY_SQL, {"id": category.id, "name": category.name})
        return category

    async def get_by_id(self, db: AsyncSession, category_id: int) -> Category | None:
        result = await db.execute(_GET_CATEGORY_SQL, {"id": category_id})
        row = result.fetchone()
        return _row_to_category(row) if row else None

    async def get_by_ids(self, db: AsyncSession, category_ids: list[int]) -> list[Category]:
        if not category_ids:
            return []
        ids_csv = ",".join(str(cid) for cid in category_ids)
        result = await db.execute(_GET_CATEGORIES_BY_IDS_SQL, {"ids_csv": ids_csv})
        return [_row_to_category(row) for row in result.fetchall()]

    async def list_all(self, db: AsyncSession) -> list[Category]:
        result = await db.execute(_LIST_CATEGORIES_SQL)
        return [_row_to_category(row) for row in result.fetchall()]


class OfferRepository:
    async def save(self, db: AsyncSession, offer: Offer) -> Offer:
        params = {
            "name": offer.name,
            "description": offer.description,
            "price": offer.price,
            "status": offer.status.value,
            "closed_at": offer.closed_at,
        }
        if offer.id is None:
            result = await db.execute(
                _INSERT_OFFER_SQL,
                {**params, "association_id": offer.association_id, "created_at": offer.created_at},
            )
            offer.id = result.scalar_one()
        else:
            await db.execute(_UPDATE_OFFER_SQL, {**params, "id": offer.id})

        # Offer row first, then the join records that reference it.
        links = [
            {"offer_id": link.offer_id, "category_id": link.category_id}
            for link in offer.category_links()
        ]
        if links:
            await db.execute(_LINK_OFFER_CATEGORY_SQL, links)
        return offer

    async def get_by_id(self, db: AsyncSession, offer_id: int) -> Offer | None:
        result = await db.execute(_GET_OFFER_SQL, {"id": offer_id})
        row = result.fetchone()
        return _row_to_offer(row) if row else None

    async def list_all(self, db: AsyncSession) -> list[Offer]:
        result = await db.execute(_LIST_OFFERS_SQL)
        return [_row_to_offer(row) for row in result.fetchall()]

    async def list_by_category(self, db: AsyncSession, category_id: int) -> list[Offer]:
        result = await db.execute(_LIST_OFFERS_BY_CATEGORY_SQL, {"category_id": category_id})
        return [_row_to_offer(row) for row in result.fetchall()]


class DemandRepository:
    async def save(self, db: AsyncSession, demand: Demand) -> Demand:
        if demand.id is not None:
            await db.execute(
                _UPDATE_DEMAND_SQL, {"id": demand.id, "status": demand.status.value}
            )
            return demand
        try:
            result = await db.execute(
                _INSERT_DEMAND_SQL,
                {
                    "offer_id": demand.offer_id,
                    "demander_id": demand.demander_id,
                    "created_at": demand.created_at,
                    "status": demand.status.value,
                },
            )
        except IntegrityError as e:
            # Concurrent create_demand calls that both passed exists_pending.
            if _PENDING_DEMAND_INDEX in str(e.orig):
                raise DuplicatePendingDemandError(demand.offer_id, demand.demander_id) from e
            raise
        demand.id = result.scalar_one()
        return demand

    async def get_by_id(self, db: AsyncSession, demand_id: int) -> Demand | None:
        result = await db.execute(_GET_DEMAND_SQL, {"id": demand_id})
        row = result.fetchone()
        return _row_to_demand(row) if row else None

    async def list_all(self, db: AsyncSession) -> list[Demand]:
        result = await db.execute(_LIST_DEMANDS_SQL)
        return [_row_to_demand(row) for row in result.fetchall()]

    async def list_by_offer(self, db: AsyncSession, offer_id: int) -> list[Demand]:
        result = await db.execute(_LIST_DEMANDS_BY_OFFER_SQL, {"offer_id": offer_id})
        return [_row_to_demand(row) for row in result.fetchall()]

    async def exists_pending(
        self, db: AsyncSession, offer_id: int, demander_id: int
    ) -> bool:
        result = await db.execute(
            _EXISTS_PENDING_DEMAND_SQL,
            {"offer_id": offer_id, "demander_id": demander_id},
        )
        return bool(result.scalar_one())
