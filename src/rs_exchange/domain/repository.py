# src/rs_exchange/domain/repository.py
"""Repository Protocols — dependency inversion for testability.

Unit tests inject mocks or the in-memory store that conform to these
Protocols. Infrastructure provides the SQL implementation.

Every method receives the unit-of-work handle ``db`` first. The service
commits or rolls it back; repositories never do.
"""

from typing import Protocol

from src.rs_exchange.domain.models import (
    Association,
    Category,
    Demand,
    Member,
    Offer,
)


class UnitOfWork(Protocol):
    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class AssociationRepositoryProtocol(Protocol):
    async def save(self, db: UnitOfWork, association: Association) -> Association: ...

    async def get_by_id(self, db: UnitOfWork, association_id: int) -> Association | None: ...

    async def list_all(self, db: UnitOfWork) -> list[Association]: ...


class MemberRepositoryProtocol(Protocol):
    async def save(self, db: UnitOfWork, member: Member) -> Member: ...

    async def get_by_id(self, db: UnitOfWork, member_id: int) -> Member | None: ...

    async def list_all(self, db: UnitOfWork) -> list[Member]: ...


class CategoryRepositoryProtocol(Protocol):
    async def save(self, db: UnitOfWork, category: Category) -> Category: ...

    async def get_by_id(self, db: UnitOfWork, category_id: int) -> Category | None: ...

    async def get_by_ids(self, db: UnitOfWork, category_ids: list[int]) -> list[Category]: ...

    async def list_all(self, db: UnitOfWork) -> list[Category]: ...


class OfferRepositoryProtocol(Protocol):
    async def save(self, db: UnitOfWork, offer: Offer) -> Offer: ...

    async def get_by_id(self, db: UnitOfWork, offer_id: int) -> Offer | None: ...

    async def list_all(self, db: UnitOfWork) -> list[Offer]: ...

    async def list_by_category(self, db: UnitOfWork, category_id: int) -> list[Offer]:
        """Distinct offers joined to the category."""
        ...


class DemandRepositoryProtocol(Protocol):
    async def save(self, db: UnitOfWork, demand: Demand) -> Demand: ...

    async def get_by_id(self, db: UnitOfWork, demand_id: int) -> Demand | None: ...

    async def list_all(self, db: UnitOfWork) -> list[Demand]: ...

    async def list_by_offer(self, db: UnitOfWork, offer_id: int) -> list[Demand]:
        """All demands of the offer ordered by created_at ASC, id ASC."""
        ...

    async def exists_pending(
        self, db: UnitOfWork, offer_id: int, demander_id: int
    ) -> bool: ...
