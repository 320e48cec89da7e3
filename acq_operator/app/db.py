"""
Async engine, session factory and declarative base.

Production runs on Postgres (postgresql+asyncpg://...). SQLite (sqlite+aiosqlite://...)
is accepted for local runs and tests; SAVEPOINT handling is patched so the
begin_nested() blocks used by the webhook and content pipelines behave the same.
"""
from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def _engine_options(url: str) -> Dict[str, Any]:
    if is_sqlite_url(url):
        return {}
    # Pooled Postgres connections can be dropped by the server between webhook bursts
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 10}


def _enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """pysqlite opens transactions implicitly and breaks SAVEPOINT; emit BEGIN ourselves."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(
    settings.database_url,
    echo=settings.app_env == "local",
    future=True,
    **_engine_options(settings.database_url),
)
if is_sqlite_url(settings.database_url):
    _enable_sqlite_savepoints(engine)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# JSONB on Postgres, plain JSON on SQLite
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all models."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed when the handler returns, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
