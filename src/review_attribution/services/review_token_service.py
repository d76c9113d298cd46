"""Review Token Service — issues review request tokens and records self-reports."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from review_attribution.domain.enums import ReviewStatus
from review_attribution.domain.models import ReviewRequest
from review_attribution.services.exceptions import (
    BookingNotFoundError,
    InvalidTokenError,
    TokenExpiredError,
)
from review_attribution.services.review_request_store import ReviewRequestStore, utcnow
from review_attribution.services.review_state_machine import can_advance

logger = logging.getLogger(__name__)


@dataclass
class ConfirmOutcome:
    review: ReviewRequest
    # False when the request had already been submitted or verified
    advanced: bool


class ReviewTokenService:
    """Creates review requests and handles the customer's confirmation."""

    def __init__(self, db: AsyncSession, token_ttl_hours: int = 0):
        self.db = db
        self.store = ReviewRequestStore(db)
        self.token_ttl_hours = token_ttl_hours

    async def create_request(
        self,
        booking_id: str,
        customer_name: str | None = None,
        customer_phone: str | None = None,
    ) -> ReviewRequest:
        """Create a pending review request for a booking.

        Name and phone default to the booking's own values. Earlier requests
        for the same booking keep their tokens.
        """
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)

        request = await self.store.create(
            booking_id=booking.id,
            customer_name=customer_name if customer_name is not None else booking.customer_name,
            customer_phone=customer_phone if customer_phone is not None else booking.phone_number,
        )
        await self.db.commit()

        logger.info(
            "Created review request %s for booking %s (token %s...)",
            request.id, booking.id, request.token[:8],
        )
        return request

    async def confirm(self, token: str | None, note: str | None = None) -> ConfirmOutcome:
        """Record the customer's claim that they left a review.

        Idempotent: confirming a submitted or verified request succeeds
        without changing it.
        """
        review = await self.store.get_by_token(token)
        if review is None:
            raise InvalidTokenError()

        if review.status == ReviewStatus.PENDING.value and self._is_expired(review):
            logger.warning("Review token %s... expired", review.token[:8])
            raise TokenExpiredError()

        # Plain copies: a rollback in _flag_booking expires ORM instances
        review_id, booking_id, status = review.id, review.booking_id, review.status

        advanced = False
        if can_advance(status, ReviewStatus.SUBMITTED):
            advanced = await self.store.advance(
                review_id, ReviewStatus.SUBMITTED, note=note or None,
            )
            await self.db.commit()

        if advanced:
            logger.info("Review request %s submitted by customer", review_id)
        else:
            logger.info(
                "Review request %s already %s; confirm is a no-op", review_id, status,
            )

        await self._flag_booking(booking_id)

        review = await self.store.get(review_id)
        return ConfirmOutcome(review=review, advanced=advanced)

    async def list_for_booking(self, booking_id: str) -> list[ReviewRequest]:
        return await self.store.list_by_booking(booking_id)

    async def flag_booking(self, booking_id: str) -> None:
        """Mark a booking as reviewed by the customer (self-report)."""
        await self._flag_booking(booking_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_expired(self, review: ReviewRequest) -> bool:
        if self.token_ttl_hours <= 0 or review.requested_at is None:
            return False
        requested_at = review.requested_at
        if requested_at.tzinfo is not None:
            requested_at = requested_at.replace(tzinfo=None)
        return utcnow() - requested_at > timedelta(hours=self.token_ttl_hours)

    async def _flag_booking(self, booking_id: str) -> None:
        # The flag is a cache; losing this write must not fail the confirmation
        try:
            updated = await self.store.set_review_flag(booking_id)
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            logger.warning("Failed to set review flag on booking %s: %s", booking_id, exc)
            return
        if not updated:
            logger.warning("Booking %s not found while setting review flag", booking_id)
