"""Purchases and enrollments: the coin-for-access half of the ledger.

Rules:
- Debits go through the conditional update in ``adjust_balance``
- Entitlement rows are inserted with ON CONFLICT, never check-then-insert
- Debit and entitlement commit together or not at all
- Cosmetics and courses are owned once; repeat calls are free no-ops
- Consumables can be bought repeatedly and stack in ``quantity``
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from edq.accounts.service import adjust_balance, get_account
from edq.catalog.service import get_course, get_item, is_consumable
from edq.db.dialect import insert_for
from edq.db.models import Account, CatalogItem, Certificate, Course, Enrollment, ItemOwnership
from edq.entitlements.schemas import EnrollmentResult, PurchaseResult
from edq.errors import DuplicateEntitlement, NotFound

logger = logging.getLogger(__name__)

DUPLICATE_POLICIES = ("ignore", "reject")

ENTITLEMENT_MODELS: dict[str, type[ItemOwnership] | type[Enrollment] | type[Certificate]] = {
    "item": ItemOwnership,
    "enrollment": Enrollment,
    "certificate": Certificate,
}


def _check_policy(on_duplicate: str) -> None:
    if on_duplicate not in DUPLICATE_POLICIES:
        raise ValueError(f"on_duplicate must be one of {DUPLICATE_POLICIES}, got {on_duplicate!r}")


async def _debit(db: AsyncSession, user_id: int, amount: int, reference: str, reason: str) -> Account:
    if amount == 0:
        return await get_account(db, user_id)
    # Without an idempotency key the adjustment is always applied or raises.
    return await adjust_balance(  # type: ignore[return-value]
        db, user_id, coins_delta=-amount, reason=reason, reference=reference,
    )


# ---------------------------------------------------------------------------
# Shop
# ---------------------------------------------------------------------------


async def purchase_item(
    db: AsyncSession,
    user_id: int,
    item_id: int,
    on_duplicate: str = "ignore",
) -> PurchaseResult:
    """Buy a shop item for coins.

    Raises NotFound, InsufficientFunds, or DuplicateEntitlement (only for an
    owned cosmetic under the reject policy). A failure rolls back the
    caller's session, so instances loaded in it are expired afterwards.
    """
    _check_policy(on_duplicate)
    try:
        item = await get_item(db, item_id)
        await get_account(db, user_id)
        if is_consumable(item):
            result = await _purchase_consumable(db, user_id, item)
        else:
            result = await _purchase_once(db, user_id, item, on_duplicate)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if result.charged:
        logger.info("User %d bought item %d for %d coins", user_id, item_id, result.charged)
    return result


async def _purchase_once(
    db: AsyncSession, user_id: int, item: CatalogItem, on_duplicate: str
) -> PurchaseResult:
    stmt = (
        insert_for(db, ItemOwnership)
        .values(user_id=user_id, item_id=item.id, quantity=1, acquired_at=datetime.now(timezone.utc))
        .on_conflict_do_nothing(index_elements=["user_id", "item_id"])
        .returning(ItemOwnership.id)
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        if on_duplicate == "reject":
            raise DuplicateEntitlement(
                f"User {user_id} already owns item {item.id}", resource="item", id=item.id
            )
        account = await get_account(db, user_id)
        return PurchaseResult(
            user_id=user_id, item_id=item.id, balance=account.coins,
            charged=0, quantity=1, already_owned=True,
        )

    account = await _debit(db, user_id, item.price, f"item:{item.id}", "purchase")
    return PurchaseResult(
        user_id=user_id, item_id=item.id, balance=account.coins,
        charged=item.price, quantity=1,
    )


async def _purchase_consumable(db: AsyncSession, user_id: int, item: CatalogItem) -> PurchaseResult:
    account = await _debit(db, user_id, item.price, f"item:{item.id}", "purchase")

    stmt = insert_for(db, ItemOwnership).values(
        user_id=user_id, item_id=item.id, quantity=1, acquired_at=datetime.now(timezone.utc),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "item_id"],
        set_={
            "quantity": ItemOwnership.quantity + 1,
            "acquired_at": stmt.excluded.acquired_at,
        },
    ).returning(ItemOwnership.quantity)
    quantity = (await db.execute(stmt)).scalar_one()

    return PurchaseResult(
        user_id=user_id, item_id=item.id, balance=account.coins,
        charged=item.price, quantity=quantity,
    )


async def list_inventory(db: AsyncSession, user_id: int) -> Sequence[ItemOwnership]:
    """Owned items, most recently acquired first."""
    result = await db.execute(
        select(ItemOwnership)
        .where(ItemOwnership.user_id == user_id)
        .order_by(ItemOwnership.acquired_at.desc(), ItemOwnership.id.desc())
    )
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


async def enroll_course(
    db: AsyncSession,
    user_id: int,
    course_id: int,
    on_duplicate: str = "ignore",
) -> EnrollmentResult:
    """Enroll in a course, paying its price. Free courses skip the balance check.

    A failure rolls back the caller's session.
    """
    _check_policy(on_duplicate)
    try:
        course = await get_course(db, course_id)
        await get_account(db, user_id)
        result = await _enroll_once(db, user_id, course, on_duplicate)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not result.already_enrolled:
        logger.info("User %d enrolled in course %d (paid %d)", user_id, course_id, result.charged)
    return result


async def _enroll_once(db: AsyncSession, user_id: int, course: Course, on_duplicate: str) -> EnrollmentResult:
    stmt = (
        insert_for(db, Enrollment)
        .values(user_id=user_id, course_id=course.id, enrolled_at=datetime.now(timezone.utc))
        .on_conflict_do_nothing(index_elements=["user_id", "course_id"])
        .returning(Enrollment.id)
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        if on_duplicate == "reject":
            raise DuplicateEntitlement(
                f"User {user_id} is already enrolled in course {course.id}", resource="course", id=course.id
            )
        account = await get_account(db, user_id)
        return EnrollmentResult(
            user_id=user_id, course_id=course.id, balance=account.coins,
            charged=0, already_enrolled=True,
        )

    account = await _debit(db, user_id, course.price, f"course:{course.id}", "enrollment")
    return EnrollmentResult(
        user_id=user_id, course_id=course.id, balance=account.coins, charged=course.price,
    )


async def is_enrolled(db: AsyncSession, user_id: int, course_id: int) -> bool:
    result = await db.execute(
        select(Enrollment.id).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.scalar_one_or_none() is not None


async def list_enrollments(db: AsyncSession, user_id: int) -> Sequence[Enrollment]:
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.user_id == user_id)
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
    )
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


async def revoke_entitlement(db: AsyncSession, kind: str, entitlement_id: int) -> None:
    """Explicit admin removal of one entitlement row. Coins are not refunded."""
    model = ENTITLEMENT_MODELS.get(kind)
    if model is None:
        raise ValueError(f"Unknown entitlement kind: {kind}")
    result = await db.execute(delete(model).where(model.id == entitlement_id))
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound(f"{kind} {entitlement_id} not found", resource=kind, id=entitlement_id)
    await db.commit()
    logger.info("Revoked %s %d", kind, entitlement_id)
