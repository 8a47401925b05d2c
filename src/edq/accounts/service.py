"""Account balances: lookup, atomic adjustment, level and login streak."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edq.accounts.schemas import LoginResult
from edq.db.dialect import insert_for
from edq.db.models import Account, BalanceLedgerEntry
from edq.errors import AccountExists, InsufficientFunds, NotFound

logger = logging.getLogger(__name__)

ROLES = ("student", "teacher", "admin")
DEFAULT_XP_PER_LEVEL = 1000


def compute_level(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    """Level from total XP: floor(xp / xp_per_level) + 1."""
    if xp < 0:
        raise ValueError("xp must be non-negative")
    return xp // xp_per_level + 1


async def get_account(db: AsyncSession, user_id: int) -> Account:
    """Fetch an account, always refreshed from the database."""
    result = await db.execute(
        select(Account)
        .where(Account.id == user_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFound(f"Account {user_id} not found", resource="account", id=user_id)
    return account


async def create_account(
    db: AsyncSession,
    username: str,
    display_name: str | None = None,
    role: str = "student",
    avatar: str | None = None,
    coins: int = 0,
) -> Account:
    """Register a new account with zero XP at level 1."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    if coins < 0:
        raise ValueError("Initial coins must be non-negative")

    account = Account(
        username=username,
        display_name=display_name or username,
        role=role,
        avatar=avatar,
        coins=coins,
        xp=0,
        level=1,
        streak=0,
    )
    db.add(account)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise AccountExists(f"Username {username!r} is taken", username=username) from exc
    await db.commit()
    return account


async def adjust_balance(
    db: AsyncSession,
    user_id: int,
    coins_delta: int = 0,
    xp_delta: int = 0,
    *,
    reason: str,
    reference: str | None = None,
    idempotency_key: str | None = None,
    xp_per_level: int = DEFAULT_XP_PER_LEVEL,
) -> Account | None:
    """Apply a balance change atomically. Does not commit.

    The coin check and the write are one conditional UPDATE, so two
    concurrent debits can never both pass against the same balance.
    Returns the updated account, or None if ``idempotency_key`` was
    already applied. On error the caller must roll back.
    """
    if xp_delta < 0:
        raise ValueError("xp_delta must be non-negative")

    if idempotency_key is not None:
        # Keyed ledger rows reference accounts.id.
        if await db.scalar(select(Account.id).where(Account.id == user_id)) is None:
            raise NotFound(f"Account {user_id} not found", resource="account", id=user_id)
        stmt = (
            insert_for(db, BalanceLedgerEntry)
            .values(
                user_id=user_id,
                coins_delta=coins_delta,
                xp_delta=xp_delta,
                reason=reason,
                reference=reference,
                idempotency_key=idempotency_key,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
            .returning(BalanceLedgerEntry.id)
        )
        if (await db.execute(stmt)).scalar_one_or_none() is None:
            return None

    result = await db.execute(
        update(Account)
        .where(Account.id == user_id, Account.coins + coins_delta >= 0)
        .values(coins=Account.coins + coins_delta, xp=Account.xp + xp_delta)
        .returning(Account.coins, Account.xp)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        balance = await db.scalar(select(Account.coins).where(Account.id == user_id))
        if balance is None:
            raise NotFound(f"Account {user_id} not found", resource="account", id=user_id)
        raise InsufficientFunds(
            f"Account {user_id} has {balance} coins, needs {-coins_delta}",
            balance=balance,
            required=-coins_delta,
        )

    if xp_delta:
        await db.execute(
            update(Account)
            .where(Account.id == user_id)
            .values(level=compute_level(row.xp, xp_per_level))
            .execution_options(synchronize_session=False)
        )

    if idempotency_key is None:
        db.add(BalanceLedgerEntry(
            user_id=user_id,
            coins_delta=coins_delta,
            xp_delta=xp_delta,
            reason=reason,
            reference=reference,
        ))
    await db.flush()
    return await get_account(db, user_id)


async def record_login(
    db: AsyncSession,
    user_id: int,
    today: date | None = None,
    *,
    bonus_base: int = 10,
    bonus_per_day: int = 5,
) -> LoginResult:
    """Update the daily streak and credit the login bonus once per day.

    Consecutive days extend the streak, a gap resets it to 1. The bonus is
    ``bonus_base + bonus_per_day * streak`` coins. A failure
    rolls back the caller's session.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()

    account = await get_account(db, user_id)
    if account.last_login_on == today:
        return LoginResult(user_id=user_id, streak=account.streak, login_bonus=0, coins=account.coins)

    if account.last_login_on == today - timedelta(days=1):
        streak = account.streak + 1
    else:
        streak = 1
    bonus = bonus_base + bonus_per_day * streak

    try:
        granted = await adjust_balance(
            db, user_id, coins_delta=bonus,
            reason="login_bonus",
            reference=today.isoformat(),
            idempotency_key=f"login:{user_id}:{today.isoformat()}",
        )
        if granted is None:
            # A concurrent login already claimed today's bonus.
            await db.rollback()
            account = await get_account(db, user_id)
            return LoginResult(user_id=user_id, streak=account.streak, login_bonus=0, coins=account.coins)

        await db.execute(
            update(Account)
            .where(Account.id == user_id)
            .values(streak=streak, last_login_on=today)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Login bonus %d coins for user %d (streak %d)", bonus, user_id, streak)
    return LoginResult(user_id=user_id, streak=streak, login_bonus=bonus, coins=granted.coins)


async def delete_account(db: AsyncSession, user_id: int) -> None:
    """Explicit admin deletion. Entitlements and ledger rows cascade."""
    result = await db.execute(delete(Account).where(Account.id == user_id))
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound(f"Account {user_id} not found", resource="account", id=user_id)
    await db.commit()
    logger.info("Deleted account %d", user_id)
