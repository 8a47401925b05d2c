"""Ledger facade: one session per operation over an explicit Store.

This is the seam the HTTP layer calls into. Every method maps to one
ledger operation and returns a pydantic model (or list of them); expected
failures raise ``edq.errors.LedgerError`` subclasses.
"""

from __future__ import annotations

import structlog

from edq.accounts import service as accounts
from edq.accounts.schemas import AccountResponse, LoginResult
from edq.catalog import service as catalog
from edq.config import Settings, get_settings
from edq.database import Store
from edq.entitlements import service as entitlements
from edq.entitlements import settlement
from edq.entitlements.certificates import list_certificates
from edq.entitlements.schemas import (
    CertificateResponse,
    EnrollmentEntry,
    EnrollmentResult,
    InventoryEntry,
    ProgressSummary,
    PurchaseResult,
    SettlementResult,
)
from edq.ranking import service as ranking
from edq.ranking.schemas import LeaderboardEntry, RankResponse

logger = structlog.get_logger()


class Ledger:
    """Rewards & economy ledger bound to a started Store."""

    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    # --- Accounts ---

    async def get_account(self, user_id: int) -> AccountResponse:
        async with self.store.session() as db:
            return AccountResponse.model_validate(await accounts.get_account(db, user_id))

    async def create_account(self, username: str, **fields: object) -> AccountResponse:
        async with self.store.session() as db:
            account = await accounts.create_account(db, username, **fields)  # type: ignore[arg-type]
            return AccountResponse.model_validate(account)

    async def record_login(self, user_id: int) -> LoginResult:
        async with self.store.session() as db:
            return await accounts.record_login(
                db, user_id,
                bonus_base=self.settings.login_bonus_base,
                bonus_per_day=self.settings.login_bonus_per_day,
            )

    # --- Catalog ---

    async def list_items(self) -> list[dict]:
        async with self.store.session() as db:
            return [
                {
                    "id": item.id,
                    "name": item.name,
                    "description": item.description,
                    "price": item.price,
                    "category": item.category,
                    "icon": item.icon,
                }
                for item in await catalog.list_items(db)
            ]

    async def list_courses(self, creator_id: int | None = None, category: str | None = None) -> list[dict]:
        async with self.store.session() as db:
            return [
                {
                    "id": course.id,
                    "title": course.title,
                    "category": course.category,
                    "price": course.price,
                    "credits": course.credits,
                    "creator_id": course.creator_id,
                }
                for course in await catalog.list_courses(db, creator_id=creator_id, category=category)
            ]

    # --- Entitlements ---

    async def purchase_item(self, user_id: int, item_id: int, on_duplicate: str = "ignore") -> PurchaseResult:
        async with self.store.session() as db:
            result = await entitlements.purchase_item(db, user_id, item_id, on_duplicate=on_duplicate)
        logger.info(
            "purchase_completed",
            user_id=user_id, item_id=item_id, charged=result.charged, balance=result.balance,
        )
        return result

    async def enroll_course(self, user_id: int, course_id: int, on_duplicate: str = "ignore") -> EnrollmentResult:
        async with self.store.session() as db:
            result = await entitlements.enroll_course(db, user_id, course_id, on_duplicate=on_duplicate)
        logger.info(
            "enrollment_completed",
            user_id=user_id, course_id=course_id, charged=result.charged, balance=result.balance,
        )
        return result

    async def settle_completion(
        self, user_id: int, course_id: int, score: int, status: str = "completed"
    ) -> SettlementResult:
        async with self.store.session() as db:
            return await settlement.settle_completion(
                db, user_id, course_id, score, status=status, settings=self.settings,
            )

    async def inventory(self, user_id: int) -> list[InventoryEntry]:
        async with self.store.session() as db:
            await accounts.get_account(db, user_id)
            return [
                InventoryEntry(
                    item_id=row.item_id,
                    name=row.item.name,
                    category=row.item.category,
                    icon=row.item.icon,
                    quantity=row.quantity,
                    acquired_at=row.acquired_at,
                )
                for row in await entitlements.list_inventory(db, user_id)
            ]

    async def enrollments(self, user_id: int) -> list[EnrollmentEntry]:
        async with self.store.session() as db:
            await accounts.get_account(db, user_id)
            return [
                EnrollmentEntry(
                    course_id=row.course_id,
                    title=row.course.title,
                    category=row.course.category,
                    credits=row.course.credits,
                    enrolled_at=row.enrolled_at,
                )
                for row in await entitlements.list_enrollments(db, user_id)
            ]

    async def certificates(self, user_id: int) -> list[CertificateResponse]:
        async with self.store.session() as db:
            await accounts.get_account(db, user_id)
            return [CertificateResponse.model_validate(c) for c in await list_certificates(db, user_id)]

    async def progress_summary(self, user_id: int) -> ProgressSummary:
        """Score totals, certificates and standing for one user."""
        async with self.store.session() as db:
            await accounts.get_account(db, user_id)
            total_score, completed = await settlement.get_progress_stats(db, user_id)
            certs = await list_certificates(db, user_id)
            return ProgressSummary(
                user_id=user_id,
                total_score=total_score,
                completed_count=completed,
                certificates=[CertificateResponse.model_validate(c) for c in certs],
                rank=await ranking.rank(db, user_id),
                total_users=await ranking.total_accounts(db),
            )

    # --- Ranking ---

    async def rank(self, user_id: int) -> RankResponse:
        async with self.store.session() as db:
            account = await accounts.get_account(db, user_id)
            return RankResponse(
                user_id=user_id,
                rank=await ranking.rank(db, user_id),
                xp=account.xp,
                total_users=await ranking.total_accounts(db),
            )

    async def leaderboard(self, limit: int | None = None) -> list[LeaderboardEntry]:
        if limit is None:
            limit = self.settings.leaderboard_default_limit
        limit = min(limit, self.settings.leaderboard_max_limit)
        async with self.store.session() as db:
            return await ranking.leaderboard(db, limit=limit)

    # --- Maintenance ---

    async def reconcile(self, limit: int | None = None) -> int:
        async with self.store.session() as db:
            return await settlement.reconcile_pending_settlements(
                db, settings=self.settings, limit=limit or self.settings.reconcile_batch_size,
            )
