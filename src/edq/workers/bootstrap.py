"""Create the ledger schema and seed the default catalog.

Usage: python -m edq.workers.bootstrap
"""

from __future__ import annotations

import asyncio
import logging

from edq.catalog.seed import seed_catalog
from edq.config import get_settings
from edq.database import Store
from edq.log_config import setup_logging

logger = logging.getLogger(__name__)


async def bootstrap(store: Store) -> int:
    """Create tables and upsert the shop catalog. Returns items seeded."""
    await store.create_schema()
    async with store.session() as db:
        return await seed_catalog(db)


async def main() -> None:
    settings = get_settings()
    setup_logging(settings)

    store = Store.from_settings(settings)
    await store.start()
    try:
        seeded = await bootstrap(store)
        logger.info("Bootstrap complete: %d catalog items", seeded)
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
