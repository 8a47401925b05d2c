"""XP ranking computed on demand from the accounts table.

Rank is ``1 + number of accounts with strictly more XP``: tied accounts
share a rank and the next distinct XP value skips ahead (1, 1, 3, 4).
The leaderboard orders by XP descending, then id ascending so equal XP
always lists in the same order. Nothing is cached.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edq.db.models import Account
from edq.errors import NotFound
from edq.ranking.schemas import LeaderboardEntry


def assign_ranks(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Attach competition ranks to rows already sorted by xp descending.

    Only correct for a prefix of the full ordering (the top N), which is
    what the leaderboard query returns.
    """
    ranked: list[dict[str, Any]] = []
    for idx, row in enumerate(rows):
        if idx > 0 and row["xp"] == rows[idx - 1]["xp"]:
            rank = ranked[-1]["rank"]
        else:
            rank = idx + 1
        ranked.append({**row, "rank": rank})
    return ranked


async def rank(db: AsyncSession, user_id: int) -> int:
    """1 + count of accounts with strictly greater XP."""
    xp = await db.scalar(select(Account.xp).where(Account.id == user_id))
    if xp is None:
        raise NotFound(f"Account {user_id} not found", resource="account", id=user_id)
    ahead = await db.scalar(select(func.count()).select_from(Account).where(Account.xp > xp))
    return int(ahead or 0) + 1


async def total_accounts(db: AsyncSession) -> int:
    count = await db.scalar(select(func.count()).select_from(Account))
    return int(count or 0)


async def leaderboard(db: AsyncSession, limit: int = 20) -> list[LeaderboardEntry]:
    """Top ``limit`` accounts by XP."""
    if limit < 1:
        raise ValueError("limit must be positive")
    result = await db.execute(
        select(
            Account.id,
            Account.display_name,
            Account.avatar,
            Account.role,
            Account.level,
            Account.xp,
        )
        .order_by(Account.xp.desc(), Account.id.asc())
        .limit(limit)
    )
    rows = [
        {
            "user_id": row.id,
            "display_name": row.display_name,
            "avatar": row.avatar,
            "role": row.role,
            "level": row.level,
            "xp": row.xp,
        }
        for row in result
    ]
    return [LeaderboardEntry(**row) for row in assign_ranks(rows)]
