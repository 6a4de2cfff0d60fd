"""Pytest configuration and fixtures for FarmChain tests.

Every test gets its own SQLite database file built from the ORM metadata,
so nothing needs a running Postgres or Redis.
"""

import os

# Must be set before farmchain.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")
os.environ["CACHE_ENABLED"] = "false"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from farmchain.database import Base
from farmchain.main import app
from farmchain.models import *  # noqa: F401,F403
from farmchain.schemas.batch import BatchCreate, CropCreate
from farmchain.services.lifecycle import BatchLifecycleEngine, build_engine, get_engine


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a throwaway SQLite database with every table."""
    db_path = tmp_path / "farmchain_test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def fetch(session_factory):
    """Run a SELECT in a fresh session and return the scalar rows."""

    async def _fetch(stmt):
        async with session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    return _fetch


@pytest_asyncio.fixture
async def lifecycle(session_factory) -> BatchLifecycleEngine:
    """Engine with DB-backed publisher/sink and inline outbox delivery."""
    engine = build_engine(session_factory)
    engine.inline_dispatch = True
    return engine


@pytest_asyncio.fixture
async def client(lifecycle) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the engine dependency overridden."""
    app.dependency_overrides[get_engine] = lambda: lifecycle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def make_batch(lifecycle):
    """Factory: create a batch whose crops carry the given quantities."""

    async def _make(
        *quantities,
        farmer_id: str = "farmer-1",
        crop_type: str = "Tomato",
        status: str | None = None,
        price=None,
    ):
        crops = [
            CropCreate(crop_name=crop_type, quantity=str(q), price=price)
            for q in quantities
        ]
        return await lifecycle.create_batch(BatchCreate(
            farmer_id=farmer_id,
            crop_type=crop_type,
            status=status,
            crops=crops,
        ))

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
