"""
Shared fixtures. The app engine is pointed at a temporary SQLite file (aiosqlite)
before any app module is imported; every test gets freshly created tables.
"""
import os
import tempfile
import time
import uuid
from pathlib import Path

_TMP_DIR = tempfile.mkdtemp(prefix="acq_operator_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TMP_DIR) / 'test.db'}"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["STORAGE_ROOT"] = str(Path(_TMP_DIR) / "storage")
os.environ["STORAGE_PUBLIC_BASE_URL"] = "https://cdn.test/storage"
os.environ["INSTAGRAM_VERIFY_TOKEN"] = "verify-me"
os.environ.pop("REDIS_URL", None)
os.environ.pop("CLAUDE_API_KEY", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from jose import jwt  # noqa: E402

from app.db import Base, async_session_factory, engine  # noqa: E402
import app.models  # noqa: E402,F401


@pytest_asyncio.fixture
async def db_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_schema):
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def session_factory():
    return async_session_factory


def make_token(user_id: uuid.UUID, secret: str = "test-secret", audience: str = "authenticated") -> str:
    """Signed HS256 access token as issued by the auth provider."""
    claims = {"sub": str(user_id), "aud": audience, "exp": int(time.time()) + 3600, "email": "owner@test.dev"}
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest_asyncio.fixture
async def client(db_schema):
    from httpx import ASGITransport, AsyncClient

    from app.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
