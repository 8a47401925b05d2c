"""Course completion settlement with reconciliation.

Settling a completion happens in two transactions:
1. Progress row (plus a pending settlement row when completed) is committed
2. Reward grant + certificate issuance, then the settlement is marked settled

If step 2 fails the settlement stays pending and the error propagates;
``reconcile_pending_settlements`` re-runs step 2 later. Both parts of step 2
are idempotent (reward keyed on the settlement row, certificate unique
on user+course title), so re-running is safe.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edq.accounts.service import adjust_balance, get_account
from edq.catalog.service import get_course
from edq.config import Settings, get_settings
from edq.db.models import Course, ProgressRecord, Settlement
from edq.entitlements.certificates import issue_certificate
from edq.entitlements.schemas import CertificateResponse, SettlementResult
from edq.errors import LedgerError

logger = logging.getLogger(__name__)

COMPLETED = "completed"
PROGRESS_STATUSES = (COMPLETED, "failed", "in_progress")

PENDING = "pending"
SETTLED = "settled"


def compute_reward(credits: int, settings: Settings) -> tuple[int, int]:
    """Return (xp, coins) earned for completing a course worth ``credits``."""
    return credits * settings.xp_per_credit, credits * settings.coins_per_credit


def completion_key(settlement_id: int) -> str:
    """Ledger idempotency key for one settlement. Every completion pays once."""
    return f"completion:{settlement_id}"


async def settle_completion(
    db: AsyncSession,
    user_id: int,
    course_id: int,
    score: int,
    status: str = COMPLETED,
    settings: Settings | None = None,
) -> SettlementResult:
    """Record progress and, for completions, grant the reward and certificate.

    Any failure rolls back the caller's session before propagating.
    """
    if status not in PROGRESS_STATUSES:
        raise ValueError(f"Unknown progress status: {status}")
    settings = settings or get_settings()

    try:
        course = await get_course(db, course_id)
        await get_account(db, user_id)

        progress = ProgressRecord(
            user_id=user_id,
            course_id=course_id,
            score=score,
            status=status,
            recorded_at=datetime.now(timezone.utc),
        )
        db.add(progress)
        await db.flush()

        settlement = None
        if status == COMPLETED:
            settlement = Settlement(user_id=user_id, course_id=course_id, progress_id=progress.id)
            db.add(settlement)
            await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if settlement is None:
        account = await get_account(db, user_id)
        return SettlementResult(
            progress_id=progress.id,
            status=status,
            settled=False,
            coins=account.coins,
            xp=account.xp,
            level=account.level,
        )

    return await _apply_settlement(db, settlement, course, settings)


async def _apply_settlement(
    db: AsyncSession,
    settlement: Settlement,
    course: Course,
    settings: Settings,
) -> SettlementResult:
    settlement_id = settlement.id
    progress_id = settlement.progress_id
    user_id = settlement.user_id
    xp_gain, coin_gain = compute_reward(course.credits, settings)

    try:
        granted = await adjust_balance(
            db, user_id,
            coins_delta=coin_gain,
            xp_delta=xp_gain,
            reason="course_completion",
            reference=f"course:{course.id}",
            idempotency_key=completion_key(settlement_id),
            xp_per_level=settings.xp_per_level,
        )
        certificate, created = await issue_certificate(db, user_id, course)

        if granted is None:
            xp_gain = coin_gain = 0
        settlement.status = SETTLED
        settlement.attempts += 1
        settlement.last_error = None
        settlement.xp_awarded = xp_gain
        settlement.coins_awarded = coin_gain
        settlement.certificate_code = certificate.code
        settlement.settled_at = datetime.now(timezone.utc)
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.exception("Settlement %d deferred for reconciliation", settlement_id)
        await _record_failure(db, settlement_id, exc)
        raise

    account = await get_account(db, user_id)
    if created:
        logger.info("Issued certificate %s to user %d for %r", certificate.code, user_id, course.title)
    return SettlementResult(
        progress_id=progress_id,
        settlement_id=settlement_id,
        status=COMPLETED,
        settled=True,
        xp_gained=xp_gain,
        coins_gained=coin_gain,
        coins=account.coins,
        xp=account.xp,
        level=account.level,
        certificate=CertificateResponse.model_validate(certificate),
        certificate_issued=created,
    )


async def _record_failure(db: AsyncSession, settlement_id: int, exc: Exception) -> None:
    """Bump the attempt counter on a pending settlement. The triggering error still propagates."""
    try:
        await db.execute(
            update(Settlement)
            .where(Settlement.id == settlement_id)
            .values(attempts=Settlement.attempts + 1, last_error=repr(exc)[:1000])
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.warning("Could not record failure for settlement %d", settlement_id, exc_info=True)


async def reconcile_pending_settlements(
    db: AsyncSession,
    settings: Settings | None = None,
    limit: int = 100,
) -> int:
    """Retry pending settlements, oldest first. Returns the number settled.

    Ledger-level failures leave the row pending for the next run; anything
    else (e.g. the store going away) aborts the batch and propagates.
    """
    settings = settings or get_settings()
    result = await db.execute(
        select(Settlement.id)
        .where(Settlement.status == PENDING)
        .order_by(Settlement.id.asc())
        .limit(limit)
    )
    pending_ids = list(result.scalars().all())

    settled = 0
    for settlement_id in pending_ids:
        settlement = await db.get(Settlement, settlement_id, populate_existing=True)
        if settlement is None or settlement.status != PENDING:
            continue
        try:
            course = await get_course(db, settlement.course_id)
            await _apply_settlement(db, settlement, course, settings)
        except (LedgerError, IntegrityError):
            logger.warning("Settlement %d still pending", settlement_id)
            continue
        settled += 1

    if pending_ids:
        logger.info("Reconciled %d of %d pending settlements", settled, len(pending_ids))
    return settled


async def get_progress_stats(db: AsyncSession, user_id: int) -> tuple[int, int]:
    """Return (sum of best score per course, number of distinct completed courses)."""
    best = (
        select(func.max(ProgressRecord.score).label("best"))
        .where(ProgressRecord.user_id == user_id)
        .group_by(ProgressRecord.course_id)
        .subquery()
    )
    total_score = await db.scalar(select(func.coalesce(func.sum(best.c.best), 0)))
    completed = await db.scalar(
        select(func.count(distinct(ProgressRecord.course_id))).where(
            ProgressRecord.user_id == user_id,
            ProgressRecord.status == COMPLETED,
        )
    )
    return int(total_score or 0), int(completed or 0)
