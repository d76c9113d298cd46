"""Review Request Store — persistence for ReviewRequest rows.

Every status change goes through :meth:`ReviewRequestStore.advance`, a single
conditional UPDATE, so the confirm endpoint and the verification job can race on
the same row without either one moving it backward.
"""

import logging
import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from review_attribution.domain.enums import ReviewStatus
from review_attribution.domain.models import Booking, ReviewRequest
from review_attribution.services.review_state_machine import (
    ENTRY_TIMESTAMP_FIELDS,
    earlier_statuses,
)

logger = logging.getLogger(__name__)

# 32 random bytes -> 43 URL-safe characters, 256 bits of entropy
TOKEN_BYTES = 32
# Longest token the column holds; longer input cannot be a real token
MAX_TOKEN_LENGTH = 64


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores naive datetimes)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class ReviewRequestStore:
    """Reads and writes ReviewRequest rows. Callers own the transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_booking(self, booking_id: str) -> Booking | None:
        return await self.db.get(Booking, booking_id)

    async def create(
        self,
        booking_id: str,
        customer_name: str | None = None,
        customer_phone: str | None = None,
    ) -> ReviewRequest:
        """Insert a new pending request with a freshly generated token."""
        request = ReviewRequest(
            id=str(uuid.uuid4()),
            booking_id=booking_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            token=generate_token(),
            status=ReviewStatus.PENDING.value,
            requested_at=utcnow(),
        )
        self.db.add(request)
        await self.db.flush()
        return request

    async def get(self, request_id: str) -> ReviewRequest | None:
        result = await self.db.execute(
            select(ReviewRequest)
            .where(ReviewRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str | None) -> ReviewRequest | None:
        """Exact token lookup. Empty, oversized or unknown tokens all return None."""
        if not token or len(token) > MAX_TOKEN_LENGTH:
            return None
        result = await self.db.execute(
            select(ReviewRequest)
            .where(ReviewRequest.token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_booking(self, booking_id: str) -> list[ReviewRequest]:
        result = await self.db.execute(
            select(ReviewRequest)
            .where(ReviewRequest.booking_id == booking_id)
            .order_by(ReviewRequest.requested_at.desc())
        )
        return list(result.scalars().all())

    async def list_unverified(self) -> list[ReviewRequest]:
        """Requests the verification job may still promote.

        Rows with neither a name nor a phone can never pass the candidate
        filter, so they are not loaded at all.
        """
        result = await self.db.execute(
            select(ReviewRequest)
            .where(
                ReviewRequest.status != ReviewStatus.VERIFIED.value,
                (ReviewRequest.customer_name.isnot(None))
                | (ReviewRequest.customer_phone.isnot(None)),
            )
            .order_by(ReviewRequest.requested_at)
        )
        return list(result.scalars().all())

    async def claimed_review_refs(self, source_ref: str) -> dict[str, str]:
        """Map external review id -> booking id for reviews already used for *source_ref*."""
        result = await self.db.execute(
            select(ReviewRequest.external_review_ref, ReviewRequest.booking_id).where(
                ReviewRequest.status == ReviewStatus.VERIFIED.value,
                ReviewRequest.external_source_ref == source_ref,
                ReviewRequest.external_review_ref.isnot(None),
            )
        )
        return {ref: booking_id for ref, booking_id in result.all()}

    async def advance(
        self,
        request_id: str,
        target: ReviewStatus,
        **values,
    ) -> bool:
        """Compare-and-advance *request_id* to *target*.

        Applies only if the row's current status is strictly earlier than
        *target*; the entry timestamp for *target* is stamped in the same
        statement. Returns True if this call moved the row.
        """
        allowed = earlier_statuses(target)
        if not allowed:
            return False

        values.setdefault(ENTRY_TIMESTAMP_FIELDS[target], utcnow())
        result = await self.db.execute(
            update(ReviewRequest)
            .where(
                ReviewRequest.id == request_id,
                ReviewRequest.status.in_(allowed),
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_review_flag(self, booking_id: str) -> bool:
        """Set the booking's self-report flag. Returns False if the booking is gone."""
        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(review_flag=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
