"""Reconciliation arq worker: settles completion rewards left pending.

Import path for arq CLI: arq edq.workers.reconcile.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from edq.config import get_settings
from edq.database import Store
from edq.entitlements.settlement import reconcile_pending_settlements
from edq.log_config import setup_logging

logger = structlog.get_logger()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Start the store on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    store = Store.from_settings(settings)
    await store.start()
    ctx["store"] = store
    ctx["settings"] = settings
    logger.info("reconcile_worker_started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Close the store on worker shutdown."""
    store: Store | None = ctx.get("store")
    if store:
        await store.close()
    logger.info("reconcile_worker_stopped")


async def reconcile_settlements(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: retry pending settlements in one batch."""
    store: Store = ctx["store"]
    settings = ctx["settings"]
    async with store.session() as db:
        settled = await reconcile_pending_settlements(db, settings, limit=settings.reconcile_batch_size)
    if settled:
        logger.info("settlements_reconciled", settled=settled)
    return settled


def _interval_minutes(every: int) -> set[int]:
    """Cron minute set for a run every ``every`` minutes. ``every`` must divide 60."""
    if every < 1 or 60 % every:
        raise ValueError(f"Interval {every} does not divide 60")
    return set(range(0, 60, every))


class WorkerSettings:
    """arq worker settings for settlement reconciliation."""

    functions = [reconcile_settlements]
    cron_jobs = [
        cron(reconcile_settlements, minute=_interval_minutes(get_settings().reconcile_interval_minutes)),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
