"""SQLAlchemy ORM models for review attribution.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- DateTime for timestamps (naive UTC, no TIMESTAMPTZ)
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.sql import func

from review_attribution.infra.database import Base


# ---------------------------------------------------------------------------
# Bookings (owned by the bookings module)
# ---------------------------------------------------------------------------


class Booking(Base):
    """Show booking. Only the columns the review flow reads or writes are mapped."""

    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_name = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)
    # Self-report cache: true once any review request reached "submitted"
    review_flag = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Review requests
# ---------------------------------------------------------------------------


class ReviewRequest(Base):
    """A tracked intent to collect a public review for one booking."""

    __tablename__ = "review_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, submitted, verified
    requested_at = Column(DateTime, nullable=False, default=func.now())
    submitted_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_method = Column(String(50), nullable=True)  # e.g. gmaps
    external_source_ref = Column(String(255), nullable=True)  # reviewed listing (place id)
    external_review_ref = Column(String(255), nullable=True)  # matched public review
    match_score = Column(Float, nullable=True)
    note = Column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Job leases
# ---------------------------------------------------------------------------


class JobLease(Base):
    """Advisory lock row keyed by job name; at most one live holder per job."""

    __tablename__ = "job_leases"

    name = Column(String(100), primary_key=True)
    holder = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
