# tests/unit/test_exchange_flow.py
"""Offer/demand lifecycle scenarios run against the in-memory store."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from src.rs_common.enums import DemandStatus, OfferStatus
from src.rs_common.errors import (
    CategoriesNotFoundError,
    DuplicatePendingDemandError,
    InvalidArgumentError,
    MemberWithoutAssociationError,
    NotAuthorizedError,
    OfferNotOpenError,
    RepresenterNotInAssociationError,
)
from src.rs_exchange.application.service import ExchangeService
from src.rs_exchange.infrastructure.memory import MemoryDemandRepository, memory_repositories


@pytest_asyncio.fixture
async def world(svc, db):
    """Two associations, a representer, two outside members, one category."""
    a = await svc.create_association(db, "A")
    b = await svc.create_association(db, "B")
    rep = await svc.add_member(db, a.id, "Rep")
    colleague = await svc.add_member(db, a.id, "Colleague")
    m2 = await svc.add_member(db, b.id, "M2")
    m3 = await svc.add_member(db, b.id, "M3")
    m4 = await svc.add_member(db, b.id, "M4")
    furniture = await svc.create_category(db, "Furniture")
    return {
        "a": a, "b": b, "rep": rep, "colleague": colleague,
        "m2": m2, "m3": m3, "m4": m4, "furniture": furniture,
    }


async def _open_offer(svc, db, world, name="Table"):
    return await svc.create_offer(
        db, world["rep"].id, name, "Solid oak", Decimal("50"), [world["furniture"].id]
    )


class TestNames:
    @pytest.mark.parametrize("name", [None, "", "   "])
    @pytest.mark.asyncio
    async def test_blank_names_rejected_everywhere(self, svc, db, world, name) -> None:
        with pytest.raises(InvalidArgumentError):
            await svc.create_association(db, name)
        with pytest.raises(InvalidArgumentError):
            await svc.create_category(db, name)
        with pytest.raises(InvalidArgumentError):
            await svc.add_member(db, world["a"].id, name)

    @pytest.mark.asyncio
    async def test_names_are_trimmed(self, svc, db) -> None:
        association = await svc.create_association(db, "  Emmaus ")
        member = await svc.add_member(db, association.id, "\tRep\n")
        category = await svc.create_category(db, " Books ")
        assert (association.name, member.name, category.name) == ("Emmaus", "Rep", "Books")


class TestRepresenter:
    @pytest.mark.asyncio
    async def test_assign_representer(self, svc, db, world) -> None:
        association = await svc.assign_representer(db, world["a"].id, world["rep"].id)
        assert association.representer_id == world["rep"].id

    @pytest.mark.asyncio
    async def test_member_of_other_association_rejected(self, svc, db, world) -> None:
        with pytest.raises(RepresenterNotInAssociationError):
            await svc.assign_representer(db, world["a"].id, world["m2"].id)


class TestCreateOffer:
    @pytest.mark.asyncio
    async def test_unattached_member_cannot_offer(self, svc, db, world) -> None:
        solo = await svc.create_member(db, "Solo")
        with pytest.raises(MemberWithoutAssociationError):
            await svc.create_offer(db, solo.id, "Lamp", "", Decimal("1"), [world["furniture"].id])

    @pytest.mark.asyncio
    async def test_unknown_categories_named(self, svc, db, world) -> None:
        with pytest.raises(CategoriesNotFoundError) as exc:
            await svc.create_offer(
                db, world["rep"].id, "Lamp", "", Decimal("1"),
                [world["furniture"].id, 404, 405],
            )
        assert exc.value.missing_ids == [404, 405]
        assert await svc.list_offers(db) == []

    @pytest.mark.asyncio
    async def test_listing_by_category_is_distinct(self, svc, db, world) -> None:
        books = await svc.create_category(db, "Books")
        fid = world["furniture"].id
        shelf = await svc.create_offer(
            db, world["rep"].id, "Shelf", "", Decimal("5"), [fid, books.id, fid]
        )
        await svc.create_offer(db, world["rep"].id, "Novel", "", Decimal("1"), [books.id])

        by_furniture = await svc.list_offers_by_category(db, fid)

        assert [o.id for o in by_furniture] == [shelf.id]
        assert sorted(shelf.category_ids) == sorted([fid, books.id])
        assert len(await svc.list_offers_by_category(db, books.id)) == 2


class TestCreateDemand:
    @pytest.mark.asyncio
    async def test_duplicate_pending_rejected(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        await svc.create_demand(db, offer.id, world["m2"].id)
        with pytest.raises(DuplicatePendingDemandError):
            await svc.create_demand(db, offer.id, world["m2"].id)

    @pytest.mark.asyncio
    async def test_new_demand_allowed_after_cancel(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        first = await svc.create_demand(db, offer.id, world["m2"].id)
        await svc.cancel_demand(db, first.id)

        again = await svc.create_demand(db, offer.id, world["m2"].id)

        assert again.id != first.id
        assert again.status == DemandStatus.PENDING

    @pytest.mark.asyncio
    async def test_closed_offer_rejects_demands(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        await svc.validate_offer(db, world["rep"].id, offer.id)
        with pytest.raises(OfferNotOpenError):
            await svc.create_demand(db, offer.id, world["m2"].id)


class TestDemandRank:
    @pytest.mark.asyncio
    async def test_ranks_follow_creation_order(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)
        d3 = await svc.create_demand(db, offer.id, world["m4"].id)

        assert [await svc.get_demand_rank(db, d.id) for d in (d1, d2, d3)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_cancelled_demand_leaves_the_queue(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)
        d3 = await svc.create_demand(db, offer.id, world["m4"].id)

        await svc.cancel_demand(db, d1.id)

        assert await svc.get_demand_rank(db, d2.id) == 1
        assert await svc.get_demand_rank(db, d3.id) == 2
        assert await svc.get_demand_rank(db, d1.id) is None

    @pytest.mark.asyncio
    async def test_same_timestamp_ranked_by_id(self, svc, db, world, clock) -> None:
        offer = await _open_offer(svc, db, world)
        clock.step = timedelta(0)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)

        assert d1.created_at == d2.created_at
        assert await svc.get_demand_rank(db, d1.id) == 1
        assert await svc.get_demand_rank(db, d2.id) == 2

    @pytest.mark.asyncio
    async def test_queue_lists_every_status(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)
        await svc.cancel_demand(db, d1.id)

        queue = await svc.list_offer_demands(db, offer.id)

        assert [(d.id, d.status) for d in queue] == [
            (d1.id, DemandStatus.CANCELLED), (d2.id, DemandStatus.PENDING),
        ]


class TestValidateOffer:
    @pytest.mark.asyncio
    async def test_oldest_pending_wins(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)

        approved = await svc.validate_offer(db, world["rep"].id, offer.id)

        assert approved.id == d1.id
        assert approved.status == DemandStatus.APPROVED
        queue = {d.id: d.status for d in await svc.list_offer_demands(db, offer.id)}
        assert queue == {d1.id: DemandStatus.APPROVED, d2.id: DemandStatus.REJECTED}
        closed = (await svc.list_offers(db))[0]
        assert closed.status == OfferStatus.CLOSED
        assert closed.closed_at is not None

        with pytest.raises(OfferNotOpenError):
            await svc.validate_offer(db, world["rep"].id, offer.id)

    @pytest.mark.asyncio
    async def test_cancelled_demands_untouched(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        d1 = await svc.create_demand(db, offer.id, world["m2"].id)
        d2 = await svc.create_demand(db, offer.id, world["m3"].id)
        await svc.cancel_demand(db, d1.id)

        approved = await svc.validate_offer(db, world["rep"].id, offer.id)

        assert approved.id == d2.id
        statuses = [d.status for d in await svc.list_offer_demands(db, offer.id)]
        assert statuses == [DemandStatus.CANCELLED, DemandStatus.APPROVED]

    @pytest.mark.asyncio
    async def test_no_pending_demand_still_closes(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)

        assert await svc.validate_offer(db, world["rep"].id, offer.id) is None
        assert (await svc.list_offers(db))[0].status == OfferStatus.CLOSED

    @pytest.mark.asyncio
    async def test_any_member_of_owning_association_may_validate(self, svc, db, world) -> None:
        await svc.assign_representer(db, world["a"].id, world["rep"].id)
        offer = await _open_offer(svc, db, world)
        await svc.create_demand(db, offer.id, world["m2"].id)

        approved = await svc.validate_offer(db, world["colleague"].id, offer.id)

        assert approved is not None

    @pytest.mark.asyncio
    async def test_other_association_rejected_even_as_representer(self, svc, db, world) -> None:
        await svc.assign_representer(db, world["b"].id, world["m2"].id)
        offer = await _open_offer(svc, db, world)

        with pytest.raises(NotAuthorizedError):
            await svc.validate_offer(db, world["m2"].id, offer.id)
        assert (await svc.list_offers(db))[0].status == OfferStatus.OPEN


class TestArchiveOffer:
    @pytest.mark.asyncio
    async def test_archive_open_offer(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        demand = await svc.create_demand(db, offer.id, world["m2"].id)

        archived = await svc.archive_offer(db, offer.id)

        assert archived.status == OfferStatus.ARCHIVED
        assert archived.closed_at is not None
        queue = await svc.list_offer_demands(db, offer.id)
        assert [(d.id, d.status) for d in queue] == [(demand.id, DemandStatus.PENDING)]

    @pytest.mark.asyncio
    async def test_archive_closed_offer_refreshes_closed_at(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        await svc.validate_offer(db, world["rep"].id, offer.id)
        closed_at = (await svc.list_offers(db))[0].closed_at

        archived = await svc.archive_offer(db, offer.id)

        assert archived.status == OfferStatus.ARCHIVED
        assert archived.closed_at > closed_at

    @pytest.mark.asyncio
    async def test_archived_offers_still_listed(self, svc, db, world) -> None:
        offer = await _open_offer(svc, db, world)
        await svc.archive_offer(db, offer.id)
        assert [o.status for o in await svc.list_offers(db)] == [OfferStatus.ARCHIVED]


class _GatedDemandRepository(MemoryDemandRepository):
    """Holds every caller right after the duplicate check until all have checked."""

    def __init__(self, parties: int) -> None:
        self._barrier = asyncio.Barrier(parties)

    async def exists_pending(self, db, offer_id, demander_id):
        found = await super().exists_pending(db, offer_id, demander_id)
        await self._barrier.wait()
        return found


class TestConcurrentDemands:
    @pytest.mark.asyncio
    async def test_second_commit_rejected_by_store(self, svc, db, store, clock, world) -> None:
        offer = await _open_offer(svc, db, world)
        racing = ExchangeService(
            **{**memory_repositories(), "demands": _GatedDemandRepository(2)}, clock=clock
        )
        s1, s2 = store.session(), store.session()

        results = await asyncio.gather(
            racing.create_demand(s1, offer.id, world["m2"].id),
            racing.create_demand(s2, offer.id, world["m2"].id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], DuplicatePendingDemandError)
        assert not s1.dirty and not s2.dirty
        queue = await svc.list_offer_demands(store.session(), offer.id)
        assert [(d.demander_id, d.status) for d in queue] == [
            (world["m2"].id, DemandStatus.PENDING),
        ]


class TestStatistics:
    @pytest.mark.asyncio
    async def test_offer_counts_by_association(self, svc, db, world) -> None:
        await _open_offer(svc, db, world, "Table")
        archived = await _open_offer(svc, db, world, "Chair")
        await svc.archive_offer(db, archived.id)
        outsider = await svc.create_offer(
            db, world["m2"].id, "Bike", "", Decimal("20"), [world["furniture"].id]
        )

        counts = await svc.get_offer_count_by_association(db)

        assert counts == {world["a"].id: 2, world["b"].id: 1}
        assert sum(counts.values()) == len(await svc.list_offers(db))
        assert outsider.association_id == world["b"].id

    @pytest.mark.asyncio
    async def test_wins_keyed_by_demander_association(self, svc, db, world) -> None:
        t1 = await _open_offer(svc, db, world, "Table")
        t2 = await _open_offer(svc, db, world, "Chair")
        t3 = await _open_offer(svc, db, world, "Desk")
        await svc.create_demand(db, t1.id, world["m2"].id)
        await svc.create_demand(db, t1.id, world["m3"].id)
        await svc.create_demand(db, t2.id, world["m3"].id)
        await svc.create_demand(db, t3.id, world["colleague"].id)
        for offer in (t1, t2, t3):
            await svc.validate_offer(db, world["rep"].id, offer.id)

        wins = await svc.get_offer_wins_by_association(db)

        assert wins == {world["b"].id: 2, world["a"].id: 1}

    @pytest.mark.asyncio
    async def test_empty_store(self, svc, db) -> None:
        assert await svc.get_offer_count_by_association(db) == {}
        assert await svc.get_offer_wins_by_association(db) == {}


class TestRollback:
    @pytest.mark.asyncio
    async def test_failed_operation_leaves_no_writes(self, svc, db, store, world) -> None:
        offer = await _open_offer(svc, db, world)
        await svc.create_demand(db, offer.id, world["m2"].id)

        with pytest.raises(NotAuthorizedError):
            await svc.validate_offer(db, world["m3"].id, offer.id)

        assert not db.dirty
        fresh = store.session()
        assert (await svc.list_offers(fresh))[0].status == OfferStatus.OPEN


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, svc, db) -> None:
        a = await svc.create_association(db, "A")
        rep = await svc.add_member(db, a.id, "Rep")
        other = await svc.create_association(db, "Other")
        m2 = await svc.add_member(db, other.id, "M2")
        furniture = await svc.create_category(db, "Furniture")
        offer = await svc.create_offer(db, rep.id, "Table", "", Decimal("50"), [furniture.id])
        demand = await svc.create_demand(db, offer.id, m2.id)

        assert await svc.get_demand_rank(db, demand.id) == 1

        approved = await svc.validate_offer(db, rep.id, offer.id)
        assert approved.id == demand.id
        assert approved.status == DemandStatus.APPROVED
        assert (await svc.list_offers(db))[0].status == OfferStatus.CLOSED

        archived = await svc.archive_offer(db, offer.id)
        assert archived.status == OfferStatus.ARCHIVED
        assert await svc.get_offer_wins_by_association(db) == {other.id: 1}
