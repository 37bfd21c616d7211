# src/rs_exchange/infrastructure/memory.py
"""In-memory store: id-indexed tables with transactional sessions.

Each entity kind lives in its own ``{id: entity}`` table. Relations stay
as integer ids, resolved through lookups like the SQL repositories do.

A MemorySession stages every write and only applies them to the store on
commit(); rollback() drops them. Reads see the session's own staged writes
on top of committed data. Entities are copied in and out so that callers
mutating a returned object change nothing until they save it.

The pending-demand pair constraint (one PENDING demand per offer and
demander) is re-checked at commit time, the way the partial unique index
does it in PostgreSQL.
"""
import copy
import itertools
from typing import Any

from src.rs_common.errors import DuplicatePendingDemandError
from src.rs_exchange.domain.models import Category, Demand, Offer

_KINDS = ("associations", "members", "categories", "offers", "demands")


class MemoryStore:
    """Committed state shared by every session."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[int, Any]] = {kind: {} for kind in _KINDS}
        # Ids are consumed even when the session rolls back, like a sequence.
        self._sequences = {kind: itertools.count(1) for kind in _KINDS}

    def session(self) -> "MemorySession":
        return MemorySession(self)

    def next_id(self, kind: str) -> int:
        return next(self._sequences[kind])

    def committed(self, kind: str) -> dict[int, Any]:
        return self._tables[kind]

    def apply(self, writes: dict[str, dict[int, Any]]) -> None:
        self._check_pending_pairs(writes["demands"])
        for kind, rows in writes.items():
            self._tables[kind].update(rows)

    def _check_pending_pairs(self, staged: dict[int, Demand]) -> None:
        merged = {**self._tables["demands"], **staged}
        seen: dict[tuple[int, int], int] = {}
        for demand_id in sorted(merged):
            demand = merged[demand_id]
            if not demand.is_pending:
                continue
            pair = (demand.offer_id, demand.demander_id)
            if pair in seen and (demand_id in staged or seen[pair] in staged):
                raise DuplicatePendingDemandError(*pair)
            seen[pair] = demand_id


class MemorySession:
    """Unit of work over a MemoryStore."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._writes: dict[str, dict[int, Any]] = {kind: {} for kind in _KINDS}

    def get(self, kind: str, entity_id: int) -> Any | None:
        row = self._writes[kind].get(entity_id)
        if row is None:
            row = self._store.committed(kind).get(entity_id)
        return copy.deepcopy(row) if row is not None else None

    def rows(self, kind: str) -> list[Any]:
        merged = {**self._store.committed(kind), **self._writes[kind]}
        return [copy.deepcopy(merged[i]) for i in sorted(merged)]

    def put(self, kind: str, entity: Any) -> Any:
        if entity.id is None:
            entity.id = self._store.next_id(kind)
        self._writes[kind][entity.id] = copy.deepcopy(entity)
        return entity

    @property
    def dirty(self) -> bool:
        return any(self._writes.values())

    async def commit(self) -> None:
        self._store.apply(self._writes)
        self._writes = {kind: {} for kind in _KINDS}

    async def rollback(self) -> None:
        self._writes = {kind: {} for kind in _KINDS}


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class _MemoryRepository:
    _kind: str

    async def save(self, db: MemorySession, entity: Any) -> Any:
        return db.put(self._kind, entity)

    async def get_by_id(self, db: MemorySession, entity_id: int) -> Any | None:
        return db.get(self._kind, entity_id)

    async def list_all(self, db: MemorySession) -> list[Any]:
        return db.rows(self._kind)


class MemoryAssociationRepository(_MemoryRepository):
    _kind = "associations"


class MemoryMemberRepository(_MemoryRepository):
    _kind = "members"


class MemoryCategoryRepository(_MemoryRepository):
    _kind = "categories"

    async def get_by_ids(self, db: MemorySession, category_ids: list[int]) -> list[Category]:
        found = (db.get(self._kind, cid) for cid in dict.fromkeys(category_ids))
        return [c for c in found if c is not None]


class MemoryOfferRepository(_MemoryRepository):
    _kind = "offers"

    async def list_by_category(self, db: MemorySession, category_id: int) -> list[Offer]:
        return [o for o in db.rows(self._kind) if category_id in o.category_ids]


class MemoryDemandRepository(_MemoryRepository):
    _kind = "demands"

    async def list_by_offer(self, db: MemorySession, offer_id: int) -> list[Demand]:
        demands = [d for d in db.rows(self._kind) if d.offer_id == offer_id]
        return sorted(demands, key=lambda d: d.queue_key)

    async def exists_pending(
        self, db: MemorySession, offer_id: int, demander_id: int
    ) -> bool:
        return any(
            d.is_pending and d.offer_id == offer_id and d.demander_id == demander_id
            for d in db.rows(self._kind)
        )


def memory_repositories() -> dict[str, Any]:
    """Keyword arguments wiring ExchangeService to the in-memory repositories."""
    return {
        "associations": MemoryAssociationRepository(),
        "members": MemoryMemberRepository(),
        "categories": MemoryCategoryRepository(),
        "offers": MemoryOfferRepository(),
        "demands": MemoryDemandRepository(),
    }

