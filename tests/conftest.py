"""Shared test infrastructure for the review attribution test suite.

Provides:
- session_factory: async sessionmaker over a fresh SQLite file per test
  (a file rather than :memory: so several sessions can race on one database)
- db_session: a session from that factory
- make_booking: factory for Booking rows
- make_settings: factory for Settings that ignores the developer's .env
- make_review: factory for ExternalReview snapshots
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from review_attribution.infra.database import Base

import review_attribution.domain.models  # noqa: F401

from review_attribution.app.config import Settings
from review_attribution.domain.models import Booking
from review_attribution.services.review_fetcher import ExternalReview


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory(tmp_path):
    """Sessionmaker bound to a fresh SQLite database with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'reviews.db'}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Booking factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_booking(db_session):
    """Factory that creates and commits a Booking row.

    Usage:
        booking = await make_booking(customer_name="Rohit", phone_number="9998887770")
    """
    async def _factory(
        customer_name: str | None = "Test Customer",
        phone_number: str | None = "9000000000",
        booking_id: str | None = None,
    ) -> Booking:
        booking = Booking(
            id=booking_id or str(uuid.uuid4()),
            customer_name=customer_name,
            phone_number=phone_number,
            review_flag=False,
        )
        db_session.add(booking)
        await db_session.commit()
        return booking

    return _factory


# ---------------------------------------------------------------------------
# Settings / review factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_settings():
    """Settings with integration credentials set, overridable per test."""
    def _factory(**overrides) -> Settings:
        values = {
            "google_places_api_key": "test-api-key",
            "google_place_id": "place-123",
            "review_override_url": "",
            "public_base_url": "https://theatre.test",
            "reviews_webhook_url": "",
            "internal_token": "test-internal-token",
            "review_verification_interval_minutes": 0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _factory


@pytest.fixture
def make_review():
    def _factory(
        author: str = "Someone",
        text: str = "",
        external_id: str | None = None,
    ) -> ExternalReview:
        return ExternalReview(
            author_display_name=author,
            text=text,
            published_at=datetime(2026, 10, 1, 18, 30, tzinfo=timezone.utc),
            external_id=external_id or str(uuid.uuid4()),
        )

    return _factory
