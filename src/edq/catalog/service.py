"""Catalog reads and admin writes for shop items and courses."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edq.db.models import CatalogItem, Course, Enrollment, ItemOwnership, Settlement
from edq.errors import NotFound, ResourceInUse

logger = logging.getLogger(__name__)

CONSUMABLE = "consumable"
COSMETIC = "cosmetic"
ITEM_CATEGORIES = (COSMETIC, CONSUMABLE)


def is_consumable(item: CatalogItem) -> bool:
    """Consumables can be bought repeatedly; anything else is owned once."""
    return item.category == CONSUMABLE


async def get_item(db: AsyncSession, item_id: int) -> CatalogItem:
    result = await db.execute(select(CatalogItem).where(CatalogItem.id == item_id))
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFound(f"Item {item_id} not found", resource="item", id=item_id)
    return item


async def get_course(db: AsyncSession, course_id: int) -> Course:
    result = await db.execute(select(Course).where(Course.id == course_id))
    course = result.scalar_one_or_none()
    if course is None:
        raise NotFound(f"Course {course_id} not found", resource="course", id=course_id)
    return course


async def list_items(db: AsyncSession) -> Sequence[CatalogItem]:
    """All shop items, cheapest first."""
    result = await db.execute(select(CatalogItem).order_by(CatalogItem.price.asc(), CatalogItem.id.asc()))
    return result.scalars().all()


async def list_courses(
    db: AsyncSession,
    creator_id: int | None = None,
    category: str | None = None,
) -> Sequence[Course]:
    stmt = select(Course)
    if creator_id is not None:
        stmt = stmt.where(Course.creator_id == creator_id)
    if category is not None:
        stmt = stmt.where(Course.category == category)
    result = await db.execute(stmt.order_by(Course.id.asc()))
    return result.scalars().all()


async def create_item(
    db: AsyncSession,
    name: str,
    price: int,
    category: str = COSMETIC,
    description: str | None = None,
    icon: str | None = None,
) -> CatalogItem:
    if price < 0:
        raise ValueError("price must be non-negative")
    item = CatalogItem(name=name, price=price, category=category, description=description, icon=icon)
    db.add(item)
    await db.commit()
    return item


async def create_course(
    db: AsyncSession,
    title: str,
    price: int = 0,
    credits: int = 1,
    category: str = "General",
    creator_id: int | None = None,
) -> Course:
    if price < 0:
        raise ValueError("price must be non-negative")
    if credits < 0:
        raise ValueError("credits must be non-negative")
    course = Course(title=title, price=price, credits=credits, category=category, creator_id=creator_id)
    db.add(course)
    await db.commit()
    return course


async def delete_item(db: AsyncSession, item_id: int) -> None:
    """Delete a shop item that nobody owns."""
    await get_item(db, item_id)
    owners = await db.scalar(
        select(func.count()).select_from(ItemOwnership).where(ItemOwnership.item_id == item_id)
    )
    if owners:
        raise ResourceInUse(f"Item {item_id} is owned by {owners} account(s)", resource="item", id=item_id)
    await db.execute(delete(CatalogItem).where(CatalogItem.id == item_id))
    await db.commit()


async def delete_course(db: AsyncSession, course_id: int, cascade: bool = False) -> None:
    """Delete a course. Enrollments block deletion unless ``cascade`` is set.

    Pending settlements block deletion even with ``cascade``; reconcile
    them first.
    """
    await get_course(db, course_id)
    pending = await db.scalar(
        select(func.count()).select_from(Settlement).where(
            Settlement.course_id == course_id,
            Settlement.status == "pending",
        )
    )
    if pending:
        raise ResourceInUse(
            f"Course {course_id} has {pending} pending settlement(s)",
            resource="course", id=course_id, pending_settlements=pending,
        )
    if not cascade:
        enrolled = await db.scalar(
            select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course_id)
        )
        if enrolled:
            raise ResourceInUse(
                f"Course {course_id} has {enrolled} enrollment(s)", resource="course", id=course_id
            )
    await db.execute(delete(Course).where(Course.id == course_id))
    await db.commit()
    logger.info("Deleted course %d (cascade=%s)", course_id, cascade)
