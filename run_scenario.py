"""End-to-end walkthrough of the exchange: nominal flow, then error cases.

Runs against the in-memory store by default:
    python run_scenario.py
Pass --postgres to run it against DATABASE_URL, after `alembic upgrade head`:
    python run_scenario.py --postgres
"""
import asyncio
import logging
import sys
from decimal import Decimal
from typing import Any

from config.settings import settings
from src.rs_common.errors import AppError
from src.rs_exchange.application.service import ExchangeService
from src.rs_exchange.infrastructure.memory import MemoryStore, memory_repositories


def section(title: str) -> None:
    print(f"\n{'='*60}")
    print(f"### {title} ###")
    print('='*60)


def label(name: str) -> None:
    print(f"\n--- {name} ---")


async def expect_error(name: str, call: Any) -> None:
    label(name)
    try:
        await call
    except AppError as e:
        print(f"Expected error [{e.code}] {type(e).__name__}: {e.message}")
    else:
        print("!! no error raised")


async def run(svc: ExchangeService, db: Any) -> None:
    section("NOMINAL SCENARIO")

    association = await svc.create_association(db, "Emmaus")
    print(f"Association created: {association.id} / {association.name}")
    other = await svc.create_association(db, "Secours")
    print(f"Association created: {other.id} / {other.name}")

    rep = await svc.add_member(db, association.id, "Rep")
    await svc.assign_representer(db, association.id, rep.id)
    print(f"Representer of {association.name}: {rep.id} / {rep.name}")
    m2 = await svc.add_member(db, other.id, "M2")
    print(f"Member created: {m2.id} / {m2.name}")

    furniture = await svc.create_category(db, "Furniture")
    print(f"Category created: {furniture.id} / {furniture.name}")

    offer = await svc.create_offer(
        db, rep.id, "Table", "Solid oak", Decimal("50"), [furniture.id]
    )
    print(f"Offer created: {offer.id} / {offer.name} ({offer.status.value})")

    demand = await svc.create_demand(db, offer.id, m2.id)
    print(f"Demand created: {demand.id} ({demand.status.value})")
    print(f"Demand rank: {await svc.get_demand_rank(db, demand.id)}")

    approved = await svc.validate_offer(db, rep.id, offer.id)
    print(f"Approved demand: {approved.id if approved else None}")

    archived = await svc.archive_offer(db, offer.id)
    print(f"Offer {archived.id} status: {archived.status.value}")

    print(f"Stats (offers): {await svc.get_offer_count_by_association(db)}")
    print(f"Stats (wins):   {await svc.get_offer_wins_by_association(db)}")

    section("ERROR CASES")
    await expect_error("addMember with invalid association", svc.add_member(db, -1, "BadMember"))
    await expect_error(
        "createOffer with invalid input", svc.create_offer(db, -1, "", "", Decimal("0"), [])
    )
    await expect_error("validateOffer with unknown ids", svc.validate_offer(db, 999, 999))
    await expect_error("createDemand on archived offer", svc.create_demand(db, offer.id, m2.id))


async def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    print(f"{settings.APP_NAME} exchange scenario")
    if "--postgres" in sys.argv:
        from src.rs_common.database import engine, get_db_session

        async for session in get_db_session():
            await run(ExchangeService(), session)
        await engine.dispose()
    else:
        store = MemoryStore()
        await run(ExchangeService(**memory_repositories()), store.session())
    print("\n\n=== SCENARIO COMPLETE ===\n")


if __name__ == "__main__":
    asyncio.run(main())
