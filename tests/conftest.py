"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. The upstream Conversions API is always mocked.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

import pixelgate.models  # noqa: F401  (registers tables)
from pixelgate.database import Base
from pixelgate.services.identity_store import register_identity

TEST_CREDENTIAL = "EAABtestCredential0123456789"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def active_binding(db):
    """tok_456: registered with a forwarding credential."""
    binding = await register_identity(db, "tok_456", label="Active Store", credential=TEST_CREDENTIAL)
    await db.commit()
    return binding


@pytest.fixture
async def inactive_binding(db):
    """tok_789: registered, credential not provisioned yet."""
    binding = await register_identity(db, "tok_789", label="Pending Store")
    await db.commit()
    return binding


def make_upstream_response(status_code: int = 200, json_data=None, text: str | None = None) -> httpx.Response:
    """A real httpx.Response as the Conversions API would return it."""
    request = httpx.Request("POST", "https://graph.facebook.com/v17.0/tok/events")
    if text is not None:
        return httpx.Response(status_code, text=text, request=request)
    return httpx.Response(status_code, json=json_data, request=request)


def build_mock_client(response: httpx.Response | None = None, side_effect: Exception | None = None) -> AsyncMock:
    """Return a mock httpx.AsyncClient usable as an async ctx mgr."""
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post = AsyncMock(side_effect=side_effect)
    else:
        mock_client.post = AsyncMock(return_value=response or make_upstream_response())
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client
