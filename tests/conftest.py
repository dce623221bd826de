"""
Pytest configuration and shared fixtures.

Provides:
- AnyIO backend selection
- Fresh settings and record-type registry per test
- In-memory SQLite default data source (aiosqlite) with the test schema
- Seeded widgets and gadgets
- Caller-owned AsyncSession for bound-repository tests

Async SQLAlchemy Fixtures:
- engine: Function-scoped default data source with tables created
- widgets: Three committed Widget rows (w-1, w-2, w-3)
- gadgets: Two committed Gadget rows
- bound_session: AsyncSession that is rolled back after the test
"""

from __future__ import annotations

import os
import sys
from collections.abc import AsyncGenerator, Generator
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

# Make "tests.models" importable regardless of how pytest was invoked
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CRUDKIT_APP_ENV", "test")

import pytest  # noqa: E402 (import after path setup)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402

from crudkit.core.config import reset_settings  # noqa: E402
from crudkit.core.db import (  # noqa: E402
    dispose_data_sources,
    get_async_sessionmaker,
    register_data_source,
    session_scope,
)
from crudkit.core.notifications import drain_pending  # noqa: E402
from crudkit.repos.registry import clear_registry  # noqa: E402
from tests.models import Base, Gadget, Widget  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GADGET_STAMP = datetime(2024, 1, 1, 12, 0, 0)


# =============================================================================
# AnyIO Backend Configuration
# =============================================================================
# Per AnyIO testing docs: https://anyio.readthedocs.io/en/stable/testing.html
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_state() -> Generator[None]:
    """Each test starts with freshly loaded settings and an empty registry."""
    reset_settings()
    clear_registry()
    yield
    clear_registry()
    reset_settings()


# =============================================================================
# Data Sources
# =============================================================================


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def engine(anyio_backend) -> AsyncGenerator[AsyncEngine]:
    """
    Register an in-memory SQLite database as the default data source.

    StaticPool keeps a single connection, so every session of the test
    sees the same database; disposing it drops the data.
    """
    engine = register_data_source(None, TEST_DATABASE_URL)
    await create_schema(engine)
    yield engine
    await drain_pending()
    await dispose_data_sources()


@pytest.fixture
async def bound_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Caller-owned session; everything done through it is rolled back."""
    session = get_async_sessionmaker()()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# =============================================================================
# Seed Data
# =============================================================================


@pytest.fixture
async def widgets(engine: AsyncEngine) -> list[Widget]:
    rows = [
        Widget(id="w-1", name="alpha", color="red", size=3, version=1),
        Widget(id="w-2", name="beta", color="blue", size=1, version=1),
        Widget(id="w-3", name="gamma", color="red", size=2, version=1),
    ]
    async with session_scope() as db:
        db.add_all(rows)
    return rows


@pytest.fixture
async def gadgets(engine: AsyncEngine) -> list[Gadget]:
    rows = [
        Gadget(id=1, label="lever", updated_at=GADGET_STAMP),
        Gadget(id=2, label="pulley", updated_at=GADGET_STAMP),
    ]
    async with session_scope() as db:
        db.add_all(rows)
    return rows
