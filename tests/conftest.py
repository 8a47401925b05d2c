"""Shared test fixtures.

Every test gets its own SQLite database file so tests are isolated and
need no running Postgres.
"""

from __future__ import annotations

import io
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from pathlib import Path

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from edq.accounts.service import create_account
from edq.catalog.service import create_course, create_item
from edq.config import Settings
from edq.database import Store
from edq.db.models import Account, CatalogItem, Course
from edq.ledger import Ledger
from edq.log_config import setup_logging


@pytest.fixture
def settings() -> Settings:
    """Settings with the stock reward constants."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        log_format="console",
        xp_per_credit=50,
        coins_per_credit=20,
        xp_per_level=1000,
        login_bonus_base=10,
        login_bonus_per_day=5,
        leaderboard_default_limit=20,
        leaderboard_max_limit=100,
    )


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncGenerator[Store, None]:
    """Started store with the schema created in a fresh database file."""
    store = Store(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await store.start()
    await store.create_schema()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def db_session(store: Store) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session."""
    async with store.session() as session:
        yield session


@pytest_asyncio.fixture
async def ledger(store: Store, settings: Settings) -> Ledger:
    return Ledger(store, settings)


@pytest.fixture
def make_account(db_session: AsyncSession) -> Callable[..., Awaitable[Account]]:
    """Factory: register an account with a starting coin balance."""
    counter = {"n": 0}

    async def _make(username: str | None = None, coins: int = 0, role: str = "student") -> Account:
        counter["n"] += 1
        return await create_account(
            db_session,
            username or f"user{counter['n']}",
            role=role,
            coins=coins,
        )

    return _make


@pytest.fixture
def make_item(db_session: AsyncSession) -> Callable[..., Awaitable[CatalogItem]]:
    """Factory: create a shop item."""
    counter = {"n": 0}

    async def _make(price: int, category: str = "cosmetic", name: str | None = None) -> CatalogItem:
        counter["n"] += 1
        return await create_item(db_session, name or f"Item {counter['n']}", price, category=category)

    return _make


@pytest.fixture
def make_course(db_session: AsyncSession) -> Callable[..., Awaitable[Course]]:
    """Factory: create a course."""
    counter = {"n": 0}

    async def _make(
        price: int = 0,
        credits: int = 1,
        title: str | None = None,
        creator_id: int | None = None,
        category: str = "General",
    ) -> Course:
        counter["n"] += 1
        return await create_course(
            db_session,
            title or f"Course {counter['n']}",
            price=price,
            credits=credits,
            category=category,
            creator_id=creator_id,
        )

    return _make


@pytest.fixture
def json_logs(settings: Settings) -> Generator[Callable[[], list[dict]], None, None]:
    """Install JSON logging into a buffer; call the fixture value to get parsed lines."""
    settings.log_format = "json"
    buffer = io.StringIO()
    root = logging.getLogger()
    level = root.level
    handler = setup_logging(settings, stream=buffer)

    def _lines() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]

    yield _lines

    root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
