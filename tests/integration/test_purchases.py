"""Shop purchases: affordability, idempotent cosmetics, stacking consumables."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from edq.accounts.service import get_account
from edq.db.models import BalanceLedgerEntry, ItemOwnership
from edq.entitlements.service import list_inventory, purchase_item, revoke_entitlement
from edq.errors import DuplicateEntitlement, InsufficientFunds, NotFound

pytestmark = pytest.mark.asyncio


async def _ownership_count(db, user_id: int) -> int:
    return await db.scalar(
        select(func.count()).select_from(ItemOwnership).where(ItemOwnership.user_id == user_id)
    )


class TestPurchase:

    async def test_successful_purchase(self, db_session, make_account, make_item):
        account = await make_account(coins=500)
        item = await make_item(price=300)

        result = await purchase_item(db_session, account.id, item.id)

        assert result.balance == 200
        assert result.charged == 300
        assert result.already_owned is False
        assert (await get_account(db_session, account.id)).coins == 200
        assert await _ownership_count(db_session, account.id) == 1

    async def test_insufficient_funds_leaves_balance(self, db_session, make_account, make_item):
        """100 coins, item priced 150: rejected, still 100, nothing owned."""
        user_id = (await make_account(coins=100)).id
        item_id = (await make_item(price=150)).id

        with pytest.raises(InsufficientFunds):
            await purchase_item(db_session, user_id, item_id)

        assert (await get_account(db_session, user_id)).coins == 100
        assert await _ownership_count(db_session, user_id) == 0

    async def test_unknown_item(self, db_session, make_account):
        account = await make_account(coins=100)
        with pytest.raises(NotFound):
            await purchase_item(db_session, account.id, 999)

    async def test_unknown_user(self, db_session, make_item):
        item = await make_item(price=10)
        with pytest.raises(NotFound):
            await purchase_item(db_session, 999, item.id)

    async def test_free_item(self, db_session, make_account, make_item):
        account = await make_account(coins=0)
        item = await make_item(price=0)
        result = await purchase_item(db_session, account.id, item.id)
        assert result.balance == 0
        assert await _ownership_count(db_session, account.id) == 1

    async def test_invalid_policy(self, db_session, make_account, make_item):
        account = await make_account(coins=10)
        item = await make_item(price=1)
        with pytest.raises(ValueError):
            await purchase_item(db_session, account.id, item.id, on_duplicate="maybe")


class TestCosmeticIdempotence:

    async def test_second_purchase_charges_nothing(self, db_session, make_account, make_item):
        account = await make_account(coins=1000)
        item = await make_item(price=300, category="cosmetic")

        first = await purchase_item(db_session, account.id, item.id)
        second = await purchase_item(db_session, account.id, item.id)

        assert first.balance == 700
        assert second.already_owned is True
        assert second.charged == 0
        assert second.balance == 700
        assert (await get_account(db_session, account.id)).coins == 700
        assert await _ownership_count(db_session, account.id) == 1

        debits = await db_session.scalar(
            select(func.count()).select_from(BalanceLedgerEntry).where(
                BalanceLedgerEntry.user_id == account.id,
                BalanceLedgerEntry.reason == "purchase",
            )
        )
        assert debits == 1

    async def test_owned_cosmetic_when_broke_is_still_fine(self, db_session, make_account, make_item):
        account = await make_account(coins=300)
        item = await make_item(price=300)
        await purchase_item(db_session, account.id, item.id)
        result = await purchase_item(db_session, account.id, item.id)
        assert result.already_owned is True
        assert result.balance == 0

    async def test_reject_policy(self, db_session, make_account, make_item):
        user_id = (await make_account(coins=1000)).id
        item_id = (await make_item(price=100)).id
        await purchase_item(db_session, user_id, item_id)
        with pytest.raises(DuplicateEntitlement):
            await purchase_item(db_session, user_id, item_id, on_duplicate="reject")
        assert (await get_account(db_session, user_id)).coins == 900


class TestConsumables:

    async def test_repeat_purchases_stack(self, db_session, make_account, make_item):
        account = await make_account(coins=200)
        item = await make_item(price=50, category="consumable")

        results = [await purchase_item(db_session, account.id, item.id) for _ in range(3)]

        assert [r.quantity for r in results] == [1, 2, 3]
        assert results[-1].balance == 50
        assert await _ownership_count(db_session, account.id) == 1

    async def test_consumable_insufficient_funds(self, db_session, make_account, make_item):
        user_id = (await make_account(coins=60)).id
        item_id = (await make_item(price=50, category="consumable")).id
        await purchase_item(db_session, user_id, item_id)
        with pytest.raises(InsufficientFunds):
            await purchase_item(db_session, user_id, item_id)
        inventory = await list_inventory(db_session, user_id)
        assert inventory[0].quantity == 1
        assert (await get_account(db_session, user_id)).coins == 10


class TestCoinsNeverNegative:

    async def test_random_sequence(self, db_session, make_account, make_item):
        user_id = (await make_account(coins=275)).id
        item_ids = [
            (await make_item(price=p, category=c)).id
            for p, c in [(100, "cosmetic"), (50, "consumable"), (120, "cosmetic"), (30, "consumable")]
        ]
        rejected = 0
        for item_id in item_ids * 3:
            try:
                result = await purchase_item(db_session, user_id, item_id)
                assert result.balance >= 0
            except InsufficientFunds:
                rejected += 1
            assert (await get_account(db_session, user_id)).coins >= 0
        assert rejected > 0


class TestRevoke:

    async def test_revoke_ownership(self, db_session, make_account, make_item):
        account = await make_account(coins=100)
        item = await make_item(price=10)
        await purchase_item(db_session, account.id, item.id)
        inventory = await list_inventory(db_session, account.id)

        await revoke_entitlement(db_session, "item", inventory[0].id)

        assert await _ownership_count(db_session, account.id) == 0
        assert (await get_account(db_session, account.id)).coins == 90

    async def test_revoke_missing(self, db_session):
        with pytest.raises(NotFound):
            await revoke_entitlement(db_session, "certificate", 1)

    async def test_revoke_unknown_kind(self, db_session):
        with pytest.raises(ValueError):
            await revoke_entitlement(db_session, "badge", 1)
