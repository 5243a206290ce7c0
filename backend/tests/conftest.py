"""
Quilkalam Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Services run against a real SQLite file database (aiosqlite, foreign
       keys on) so cascades, unique constraints and counter expressions are
       exercised for real. The schema is rebuilt for every test.

Fixture Hierarchy:
    Function-scoped:
    ├── db_engine:       Fresh schema on the application engine
    ├── db_session:      AsyncSession for service-level tests
    ├── author / reader: Persisted users with their Identity
    ├── published:       A public project owned by `author`
    ├── png_data_url:    A tiny valid PNG as a data URL
    └── test_client:     HTTPX AsyncClient bound to the FastAPI app
"""

import base64
import os
import struct
import tempfile
import zlib
from typing import Any, AsyncGenerator, Tuple
from unittest.mock import patch

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup (before any quilkalam import reads settings)
# ══════════════════════════════════════════════════════════════════════════

_TEST_DIR = tempfile.mkdtemp(prefix="quilkalam_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["TOKEN_SECRET"] = "test-secret-not-for-production"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_DIR, "storage")
os.environ["PUBLIC_FILES_URL"] = "http://test/api/files"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from quilkalam.database import Base, async_session_factory, engine  # noqa: E402
from quilkalam.models import User  # noqa: E402
from quilkalam.schemas.project import PublishItem, PublishRequest  # noqa: E402
from quilkalam.services.identity_service import Identity, identity_service  # noqa: E402
from quilkalam.services.project_service import project_service  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """
    Rebuilds every table before the test and disposes pooled connections
    after it, so no aiosqlite connection outlives its event loop.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """A session the test drives directly; nothing is committed for it."""
    async with async_session_factory() as session:
        yield session
        await session.rollback()


async def make_user(
    db: AsyncSession,
    phone_number: str,
    display_name: str,
) -> Tuple[User, Identity]:
    user = User(
        phone_number=phone_number,
        password_hash=identity_service.hash_password("secret-password"),
        display_name=display_name,
    )
    db.add(user)
    await db.flush()
    return user, Identity(user_id=user.id, phone_number=phone_number)


@pytest_asyncio.fixture
async def author(db_session) -> Tuple[User, Identity]:
    return await make_user(db_session, "+15550000001", "Author")


@pytest_asyncio.fixture
async def reader(db_session) -> Tuple[User, Identity]:
    return await make_user(db_session, "+15550000002", "Reader")


def publish_request(title: str = "The Dragon's Road", **overrides) -> PublishRequest:
    """A valid PublishRequest with one chapter holding four words."""
    data = {
        "type": "novel",
        "title": title,
        "description": "A tale of roads",
        "genre": "fantasy",
        "word_count": 4,
        "items": [
            PublishItem(ref="c1", item_type="chapter", name="One", content="it was a road", word_count=4),
        ],
    }
    data.update(overrides)
    return PublishRequest(**data)


def stale_lookup(db: AsyncSession, table: str, value: Any):
    """
    Answer the next `db.scalar()` query against `table` with `value`.

    Reproduces a concurrent request changing the row between a service's
    existence check and its write: the check sees `value`, everything after
    it sees the real table.
    """
    original = db.scalar
    pending = [value]

    async def scalar(statement, *args, **kwargs):
        if pending and f"FROM {table}" in str(statement):
            return pending.pop()
        return await original(statement, *args, **kwargs)

    return patch.object(db, "scalar", new=scalar)


@pytest_asyncio.fixture
async def published(db_session, author):
    """Project id of a public project owned by `author`."""
    _, identity = author
    result = await project_service.publish(db_session, identity, publish_request())
    return result.project_id


# ══════════════════════════════════════════════════════════════════════════
# Blob Fixtures
# ══════════════════════════════════════════════════════════════════════════

def _png_bytes(width: int = 3, height: int = 2) -> bytes:
    def chunk(kind: bytes, data: bytes) -> bytes:
        return (
            struct.pack(">I", len(data)) + kind + data
            + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)
        )

    header = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    raw = b"".join(b"\x00" + b"\x00" * width for _ in range(height))
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(raw))
        + chunk(b"IEND", b"")
    )


@pytest.fixture
def png_bytes() -> bytes:
    return _png_bytes()


@pytest.fixture
def png_data_url(png_bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(db_engine):
    """
    HTTPX AsyncClient wired to the FastAPI app through ASGITransport.

    Each request gets its own committed session through get_db_session,
    exactly as in production.
    """
    from quilkalam.main import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
