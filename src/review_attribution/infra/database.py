"""Async database engine and session management."""

import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from review_attribution.app.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


settings = get_settings()

# Auto-detect driver from DATABASE_URL
_is_sqlite = "sqlite" in settings.database_url
_connect_args = {}
if _is_sqlite:
    _connect_args["check_same_thread"] = False
    _connect_args["timeout"] = 30  # Wait up to 30s for write lock (default 5s)

_engine_kwargs = {
    "echo": False,
    "connect_args": _connect_args,
}
if not _is_sqlite:
    _engine_kwargs["pool_size"] = 5
    _engine_kwargs["max_overflow"] = 10

engine = create_async_engine(settings.database_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: yield an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


# Columns added after the first release of the review tables. SQLite has no
# ADD COLUMN IF NOT EXISTS, so "duplicate column" errors are expected.
_migrations = [
    "ALTER TABLE bookings ADD COLUMN review_flag BOOLEAN NOT NULL DEFAULT 0",
    "ALTER TABLE review_requests ADD COLUMN match_score FLOAT",
    "ALTER TABLE review_requests ADD COLUMN external_source_ref VARCHAR(255)",
    "ALTER TABLE review_requests ADD COLUMN external_review_ref VARCHAR(255)",
]


async def init_db():
    """Create all tables (for local dev). Use Alembic for production migrations."""
    # Ensure models are registered with Base.metadata
    import review_attribution.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if _is_sqlite:
        # WAL lets the confirm endpoint read while the verification job writes
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))

        for stmt in _migrations:
            try:
                async with engine.begin() as conn:
                    await conn.execute(text(stmt))
            except OperationalError:
                logger.debug("Migration already applied: %s", stmt)
