"""Account store: registration, balance adjustment, login streak, deletion."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from edq.accounts.service import (
    adjust_balance,
    create_account,
    delete_account,
    get_account,
    record_login,
)
from edq.db.models import BalanceLedgerEntry, ItemOwnership
from edq.entitlements.service import purchase_item
from edq.errors import AccountExists, InsufficientFunds, NotFound

pytestmark = pytest.mark.asyncio


class TestRegistration:

    async def test_new_account_defaults(self, db_session):
        account = await create_account(db_session, "alice")
        assert account.coins == 0
        assert account.xp == 0
        assert account.level == 1
        assert account.streak == 0
        assert account.role == "student"
        assert account.display_name == "alice"

    async def test_duplicate_username(self, db_session):
        await create_account(db_session, "alice")
        with pytest.raises(AccountExists):
            await create_account(db_session, "alice")

    async def test_unknown_role_rejected(self, db_session):
        with pytest.raises(ValueError):
            await create_account(db_session, "bob", role="superuser")

    async def test_get_missing_account(self, db_session):
        with pytest.raises(NotFound) as exc_info:
            await get_account(db_session, 999)
        assert exc_info.value.code == "not_found"


class TestAdjustBalance:

    async def test_credit_and_level_recompute(self, db_session, make_account):
        account = await make_account(coins=0)
        updated = await adjust_balance(db_session, account.id, coins_delta=60, xp_delta=1150, reason="test")
        await db_session.commit()
        assert updated.coins == 60
        assert updated.xp == 1150
        assert updated.level == 2

    async def test_debit_below_zero_rejected(self, db_session, make_account):
        user_id = (await make_account(coins=100)).id
        with pytest.raises(InsufficientFunds) as exc_info:
            await adjust_balance(db_session, user_id, coins_delta=-150, reason="test")
        await db_session.rollback()
        assert exc_info.value.context["balance"] == 100
        assert (await get_account(db_session, user_id)).coins == 100

    async def test_debit_to_exactly_zero(self, db_session, make_account):
        account = await make_account(coins=100)
        updated = await adjust_balance(db_session, account.id, coins_delta=-100, reason="test")
        await db_session.commit()
        assert updated.coins == 0

    async def test_negative_xp_rejected(self, db_session, make_account):
        account = await make_account()
        with pytest.raises(ValueError):
            await adjust_balance(db_session, account.id, xp_delta=-10, reason="test")

    async def test_missing_account(self, db_session):
        with pytest.raises(NotFound):
            await adjust_balance(db_session, 404, coins_delta=10, reason="test")

    async def test_missing_account_with_idempotency_key(self, db_session):
        with pytest.raises(NotFound):
            await adjust_balance(
                db_session, 424242, coins_delta=5, reason="test", idempotency_key="k1",
            )
        await db_session.rollback()
        entries = await db_session.scalar(select(func.count()).select_from(BalanceLedgerEntry))
        assert entries == 0

    async def test_idempotency_key_applies_once(self, db_session, make_account):
        account = await make_account()
        first = await adjust_balance(
            db_session, account.id, coins_delta=10, reason="test", idempotency_key="k1",
        )
        await db_session.commit()
        second = await adjust_balance(
            db_session, account.id, coins_delta=10, reason="test", idempotency_key="k1",
        )
        await db_session.commit()
        assert first is not None
        assert second is None
        assert (await get_account(db_session, account.id)).coins == 10

    async def test_every_movement_is_logged(self, db_session, make_account):
        account = await make_account(coins=50)
        await adjust_balance(db_session, account.id, coins_delta=-20, reason="purchase", reference="item:1")
        await adjust_balance(db_session, account.id, coins_delta=5, reason="gift")
        await db_session.commit()
        rows = (await db_session.execute(
            select(BalanceLedgerEntry)
            .where(BalanceLedgerEntry.user_id == account.id)
            .order_by(BalanceLedgerEntry.id)
        )).scalars().all()
        assert [(r.coins_delta, r.reason) for r in rows] == [(-20, "purchase"), (5, "gift")]


class TestLoginStreak:

    async def test_first_login(self, db_session, make_account):
        account = await make_account()
        result = await record_login(db_session, account.id, today=date(2026, 3, 2))
        assert result.streak == 1
        assert result.login_bonus == 15
        assert result.coins == 15

    async def test_consecutive_days_extend_streak(self, db_session, make_account):
        account = await make_account()
        await record_login(db_session, account.id, today=date(2026, 3, 2))
        result = await record_login(db_session, account.id, today=date(2026, 3, 3))
        assert result.streak == 2
        assert result.login_bonus == 20
        assert result.coins == 35

    async def test_same_day_no_bonus(self, db_session, make_account):
        account = await make_account()
        await record_login(db_session, account.id, today=date(2026, 3, 2))
        result = await record_login(db_session, account.id, today=date(2026, 3, 2))
        assert result.login_bonus == 0
        assert result.coins == 15

    async def test_gap_resets_streak(self, db_session, make_account):
        account = await make_account()
        await record_login(db_session, account.id, today=date(2026, 3, 2))
        await record_login(db_session, account.id, today=date(2026, 3, 3))
        result = await record_login(db_session, account.id, today=date(2026, 3, 6))
        assert result.streak == 1
        assert (await get_account(db_session, account.id)).streak == 1


class TestDeleteAccount:

    async def test_delete_cascades_entitlements(self, db_session, make_account, make_item):
        account = await make_account(coins=500)
        item = await make_item(price=100)
        await purchase_item(db_session, account.id, item.id)

        await delete_account(db_session, account.id)

        with pytest.raises(NotFound):
            await get_account(db_session, account.id)
        owned = await db_session.scalar(
            select(func.count()).select_from(ItemOwnership).where(ItemOwnership.user_id == account.id)
        )
        assert owned == 0

    async def test_delete_missing(self, db_session):
        with pytest.raises(NotFound):
            await delete_account(db_session, 12345)
