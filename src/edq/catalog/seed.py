"""Default shop catalog, upserted by name."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from edq.db.dialect import insert_for
from edq.db.models import CatalogItem

logger = logging.getLogger(__name__)

ITEM_SEED_DATA: list[dict] = [
    {
        "name": "Streak Freeze",
        "description": "Protect your streak for 1 day",
        "price": 50,
        "category": "consumable",
        "icon": "\U0001f9ca",
    },
    {
        "name": "Double XP Potion",
        "description": "Gain 2x XP for 1 hour",
        "price": 100,
        "category": "consumable",
        "icon": "\U0001f9ea",
    },
    {
        "name": "Wizard Hat",
        "description": "Unlock Wizard role title",
        "price": 300,
        "category": "cosmetic",
        "icon": "\U0001f9d9",
    },
    {
        "name": "Golden Frame",
        "description": "Shiny profile avatar frame",
        "price": 500,
        "category": "cosmetic",
        "icon": "\U0001f5bc\ufe0f",
    },
]


async def seed_catalog(db: AsyncSession) -> int:
    """Upsert the default shop items. Returns number of items seeded."""
    seeded = 0
    for item_data in ITEM_SEED_DATA:
        stmt = insert_for(db, CatalogItem).values(**item_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "description": stmt.excluded.description,
                "price": stmt.excluded.price,
                "category": stmt.excluded.category,
                "icon": stmt.excluded.icon,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d catalog items", seeded)
    return seeded
