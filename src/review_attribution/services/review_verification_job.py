"""Review verification job — reconciles self-reported reviews with the public feed.

One run:
1. takes the ``verify-reviews`` lease (concurrent runs skip);
2. fetches the full review snapshot before touching any row;
3. matches every not-yet-verified request against the snapshot;
4. commits each accepted match on its own, via compare-and-advance.

Safe to re-run at any point: verified rows are excluded from the scan, so a run
interrupted halfway is finished by the next one.
"""

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from review_attribution.app.config import Settings, get_settings
from review_attribution.domain.enums import ReviewEventType, ReviewStatus, VerificationSkipReason
from review_attribution.services.exceptions import ConfigurationError, UpstreamError
from review_attribution.services.job_lease import JobLeaseManager
from review_attribution.services.review_events import emit_review_event
from review_attribution.services.review_fetcher import GooglePlacesReviewFetcher
from review_attribution.services.review_matcher import MatchResult, find_best_match
from review_attribution.services.review_request_store import ReviewRequestStore
from review_attribution.services.review_source import ReviewSourceConfig

logger = logging.getLogger(__name__)

LEASE_NAME = "verify-reviews"


@dataclass
class VerificationResult:
    verified: int = 0
    fetched: int = 0
    scanned: int = 0
    skipped: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _PendingRequest:
    """Detached copy of the fields matching needs; survives session rollbacks."""

    id: str
    booking_id: str
    customer_name: str | None
    customer_phone: str | None
    note: str | None


class ReviewVerificationJob:
    """Runs one reconciliation pass against the configured review source."""

    def __init__(
        self,
        db: AsyncSession,
        fetcher: GooglePlacesReviewFetcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.fetcher = fetcher or GooglePlacesReviewFetcher(
            timeout=self.settings.review_fetch_timeout_seconds,
        )
        self.store = ReviewRequestStore(db)
        self.leases = JobLeaseManager(db)

    async def run(self) -> VerificationResult:
        holder = JobLeaseManager.new_holder_id()
        acquired = await self.leases.acquire(
            LEASE_NAME, holder, ttl_seconds=self.settings.review_job_lease_seconds,
        )
        if not acquired:
            logger.info("Review verification already running; skipping this run")
            return VerificationResult(skipped=VerificationSkipReason.LOCKED.value)

        try:
            result = await self._reconcile()
        except Exception:
            await self.db.rollback()
            raise
        finally:
            try:
                await self.leases.release(LEASE_NAME, holder)
            except SQLAlchemyError as exc:
                logger.error("Failed to release lease %s: %s", LEASE_NAME, exc)

        logger.info("Review verification finished: %s", result.as_dict())
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _reconcile(self) -> VerificationResult:
        source = ReviewSourceConfig.from_settings(self.settings)

        try:
            reviews = await self.fetcher.fetch_recent_reviews(source)
        except ConfigurationError as exc:
            logger.warning("Review verification skipped: %s", exc)
            return VerificationResult(skipped=VerificationSkipReason.NOT_CONFIGURED.value)
        except UpstreamError as exc:
            logger.error("Review verification fetch failed: %s", exc)
            return VerificationResult(skipped=VerificationSkipReason.UPSTREAM_ERROR.value)

        result = VerificationResult(fetched=len(reviews))
        if not reviews:
            return result

        pending = [
            _PendingRequest(
                id=r.id,
                booking_id=r.booking_id,
                customer_name=r.customer_name,
                customer_phone=r.customer_phone,
                note=r.note,
            )
            for r in await self.store.list_unverified()
        ]
        # external review id -> booking that already owns it
        claimed = await self.store.claimed_review_refs(source.place_id)

        newly_verified: list[_PendingRequest] = []
        for request in pending:
            result.scanned += 1
            owned_elsewhere = {
                ref for ref, booking_id in claimed.items() if booking_id != request.booking_id
            }
            match = find_best_match(
                request,
                reviews,
                threshold=self.settings.review_match_threshold,
                exclude_ids=owned_elsewhere,
            )
            if match is None:
                continue

            if await self._commit_match(request, match, source):
                result.verified += 1
                claimed[match.review.external_id] = request.booking_id
                newly_verified.append(request)

        for request in newly_verified:
            await emit_review_event(
                self.settings.reviews_webhook_url,
                ReviewEventType.VERIFIED,
                review_id=request.id,
                booking_id=request.booking_id,
            )

        return result

    async def _commit_match(
        self,
        request: _PendingRequest,
        match: MatchResult,
        source: ReviewSourceConfig,
    ) -> bool:
        try:
            advanced = await self.store.advance(
                request.id,
                ReviewStatus.VERIFIED,
                verification_method=self.settings.review_verification_method,
                external_source_ref=source.place_id,
                external_review_ref=match.review.external_id,
                match_score=round(match.score, 4),
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to verify review request %s: %s", request.id, exc)
            return False

        if advanced:
            logger.info(
                "Verified review request %s (booking %s) against review %s, score=%.2f",
                request.id, request.booking_id, match.review.external_id, match.score,
            )
        return advanced
