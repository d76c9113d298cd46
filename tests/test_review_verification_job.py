"""Tests for ReviewVerificationJob — reconciliation of requests with the review feed.

The review source is a mocked fetcher; the database is real (SQLite file).
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from review_attribution.domain.enums import ReviewStatus
from review_attribution.domain.models import Booking, ReviewRequest
from review_attribution.services.exceptions import UpstreamError
from review_attribution.services.job_lease import JobLeaseManager
from review_attribution.services.review_fetcher import GooglePlacesReviewFetcher
from review_attribution.services.review_request_store import ReviewRequestStore, utcnow
from review_attribution.services.review_token_service import ReviewTokenService
from review_attribution.services.review_verification_job import (
    LEASE_NAME,
    ReviewVerificationJob,
)


def _fake_fetcher(reviews=None, side_effect=None):
    fetcher = MagicMock(spec=GooglePlacesReviewFetcher)
    fetcher.fetch_recent_reviews = AsyncMock(return_value=reviews or [], side_effect=side_effect)
    return fetcher


async def _reload_request(db_session, request_id) -> ReviewRequest:
    result = await db_session.execute(
        select(ReviewRequest)
        .where(ReviewRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _reload_booking(db_session, booking_id) -> Booking:
    result = await db_session.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _snapshot_rows(db_session) -> list[tuple]:
    result = await db_session.execute(
        select(
            ReviewRequest.id,
            ReviewRequest.status,
            ReviewRequest.verified_at,
            ReviewRequest.external_review_ref,
        ).order_by(ReviewRequest.id)
    )
    return [tuple(row) for row in result.all()]


# ---------------------------------------------------------------------------
# End-to-end flows
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_confirm_then_verify_end_to_end(db_session, make_booking, make_settings, make_review):
    booking = await make_booking(customer_name="Rohit", phone_number="9998887770", booking_id="B1")
    svc = ReviewTokenService(db_session)
    created = await svc.create_request("B1")

    outcome = await svc.confirm(created.token, note="loved the ambience and sound")
    assert outcome.review.status == ReviewStatus.SUBMITTED.value
    assert (await _reload_booking(db_session, booking.id)).review_flag is True

    review = make_review(
        author="Rohit K",
        text="Loved the ambience and sound quality, will come again",
        external_id="1759343400",
    )
    job = ReviewVerificationJob(
        db_session, fetcher=_fake_fetcher([review]), settings=make_settings(),
    )
    result = await job.run()

    assert result.verified == 1
    assert result.fetched == 1
    assert result.scanned == 1
    assert result.skipped is None

    row = await _reload_request(db_session, created.id)
    assert row.status == ReviewStatus.VERIFIED.value
    assert row.verified_at is not None
    assert row.submitted_at is not None
    assert row.verification_method == "gmaps"
    assert row.external_source_ref == "place-123"
    assert row.external_review_ref == "1759343400"
    # 6 shared words out of 11
    assert row.match_score == pytest.approx(0.5455, abs=1e-4)

    # the self-report flag and the verified status are independent
    assert (await _reload_booking(db_session, booking.id)).review_flag is True


@pytest.mark.asyncio
async def test_pending_request_can_be_verified_directly(db_session, make_booking, make_settings, make_review):
    """The job does not require a prior customer confirmation."""
    await make_booking(customer_name="Rohit", booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")

    review = make_review(author="Rohit K", text="great show")
    job = ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=make_settings())
    result = await job.run()

    assert result.verified == 1
    row = await _reload_request(db_session, created.id)
    assert row.status == ReviewStatus.VERIFIED.value
    assert row.submitted_at is None


@pytest.mark.asyncio
async def test_phone_only_request(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name=None, phone_number="9998887770", booking_id="B2")
    svc = ReviewTokenService(db_session)
    created = await svc.create_request("B2")
    assert created.customer_name is None
    await svc.confirm(created.token, note="superb sound and lights")

    review = make_review(
        author="A Google User",
        text="Booked under 9998887770. Superb sound and lights",
        external_id="phone-review",
    )
    job = ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=make_settings())
    result = await job.run()

    assert result.verified == 1
    row = await _reload_request(db_session, created.id)
    assert row.status == ReviewStatus.VERIFIED.value
    assert row.external_review_ref == "phone-review"


@pytest.mark.asyncio
async def test_no_match_leaves_request_untouched(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")

    reviews = [
        make_review(author="Ananya Rao", text="loved it"),
        make_review(author="Rohit Verma", text="Parking was chaotic and seats were cramped tonight"),
    ]
    job = ReviewVerificationJob(db_session, fetcher=_fake_fetcher(reviews), settings=make_settings())
    result = await job.run()

    assert result.verified == 0
    assert result.scanned == 1
    row = await _reload_request(db_session, created.id)
    assert row.status == ReviewStatus.PENDING.value
    assert row.verified_at is None


# ---------------------------------------------------------------------------
# Skipped runs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"google_places_api_key": ""},
    {"google_place_id": ""},
    {"google_places_api_key": "   ", "google_place_id": "   "},
])
async def test_missing_credentials_mutates_nothing(db_session, make_booking, make_settings, overrides):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await ReviewTokenService(db_session).create_request("B1")
    before = await _snapshot_rows(db_session)

    settings = make_settings(**overrides)
    # Real fetcher: the credential check must happen before any HTTP call
    with patch("review_attribution.services.review_fetcher.httpx.AsyncClient") as client_cls:
        result = await ReviewVerificationJob(db_session, settings=settings).run()

    client_cls.assert_not_called()
    assert result.verified == 0
    assert result.skipped == "not_configured"
    assert await _snapshot_rows(db_session) == before


@pytest.mark.asyncio
async def test_upstream_error_mutates_nothing(db_session, make_booking, make_settings):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await ReviewTokenService(db_session).create_request("B1")
    before = await _snapshot_rows(db_session)

    fetcher = _fake_fetcher(side_effect=UpstreamError("Google Places returned status OVER_QUERY_LIMIT"))
    result = await ReviewVerificationJob(db_session, fetcher=fetcher, settings=make_settings()).run()

    assert result.verified == 0
    assert result.skipped == "upstream_error"
    assert await _snapshot_rows(db_session) == before


@pytest.mark.asyncio
async def test_empty_feed_scans_nothing(db_session, make_booking, make_settings):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await ReviewTokenService(db_session).create_request("B1")

    result = await ReviewVerificationJob(
        db_session, fetcher=_fake_fetcher([]), settings=make_settings(),
    ).run()

    assert result.as_dict() == {"verified": 0, "fetched": 0, "scanned": 0, "skipped": None}


@pytest.mark.asyncio
async def test_held_lease_skips_run(db_session, session_factory, make_settings, make_review):
    async with session_factory() as other:
        assert await JobLeaseManager(other).acquire(LEASE_NAME, "other-worker", ttl_seconds=300)

    fetcher = _fake_fetcher([make_review(author="Rohit")])
    result = await ReviewVerificationJob(db_session, fetcher=fetcher, settings=make_settings()).run()

    assert result.skipped == "locked"
    fetcher.fetch_recent_reviews.assert_not_called()


@pytest.mark.asyncio
async def test_lease_released_after_run(db_session, make_settings):
    job = ReviewVerificationJob(db_session, fetcher=_fake_fetcher([]), settings=make_settings())
    await job.run()

    # A second run would be skipped if the first had kept the lease
    second = await job.run()
    assert second.skipped is None


@pytest.mark.asyncio
async def test_lease_released_when_run_raises(db_session, make_settings):
    fetcher = _fake_fetcher(side_effect=RuntimeError("boom"))
    job = ReviewVerificationJob(db_session, fetcher=fetcher, settings=make_settings())

    with pytest.raises(RuntimeError):
        await job.run()

    assert await JobLeaseManager(db_session).acquire(LEASE_NAME, "next-run")


# ---------------------------------------------------------------------------
# Status safety
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_verified_requests_are_not_rescanned(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")
    review = make_review(author="Rohit K", text="great show", external_id="r1")
    settings = make_settings()

    first = await ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=settings).run()
    verified_at = (await _reload_request(db_session, created.id)).verified_at

    second = await ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=settings).run()

    assert first.verified == 1
    assert second.verified == 0
    assert second.scanned == 0
    assert (await _reload_request(db_session, created.id)).verified_at == verified_at


@pytest.mark.asyncio
async def test_confirm_after_verification_does_not_downgrade(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    svc = ReviewTokenService(db_session)
    created = await svc.create_request("B1")

    review = make_review(author="Rohit K", text="great show")
    await ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=make_settings()).run()

    outcome = await svc.confirm(created.token, note="great show")
    assert outcome.advanced is False
    assert (await _reload_request(db_session, created.id)).status == ReviewStatus.VERIFIED.value


@pytest.mark.asyncio
async def test_stale_submit_cannot_overwrite_verified(db_session, make_booking):
    """A confirm that read 'pending' before the job committed loses the race."""
    await make_booking(customer_name="Rohit", booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")
    store = ReviewRequestStore(db_session)

    assert await store.advance(created.id, ReviewStatus.VERIFIED, verification_method="gmaps")
    await db_session.commit()

    assert await store.advance(created.id, ReviewStatus.SUBMITTED, note="late") is False
    await db_session.commit()

    row = await _reload_request(db_session, created.id)
    assert row.status == ReviewStatus.VERIFIED.value
    assert row.note is None


@pytest.mark.asyncio
async def test_requests_without_identity_are_skipped(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name=None, phone_number=None, booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")

    review = make_review(author="Anyone", text="anything at all")
    result = await ReviewVerificationJob(
        db_session, fetcher=_fake_fetcher([review]), settings=make_settings(),
    ).run()

    assert result.scanned == 0
    assert (await _reload_request(db_session, created.id)).status == ReviewStatus.PENDING.value


# ---------------------------------------------------------------------------
# Review ownership
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_one_review_verifies_only_one_booking(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await make_booking(customer_name="Rohit", booking_id="B2")
    svc = ReviewTokenService(db_session)
    first = await svc.create_request("B1")
    second = await svc.create_request("B2")

    review = make_review(author="Rohit K", text="great show", external_id="shared")
    result = await ReviewVerificationJob(
        db_session, fetcher=_fake_fetcher([review]), settings=make_settings(),
    ).run()

    assert result.verified == 1
    statuses = {
        (await _reload_request(db_session, first.id)).status,
        (await _reload_request(db_session, second.id)).status,
    }
    assert statuses == {ReviewStatus.VERIFIED.value, ReviewStatus.PENDING.value}


@pytest.mark.asyncio
async def test_same_booking_may_reuse_its_review(db_session, make_booking, make_settings, make_review):
    """A resent link for the same booking can be verified by the same review."""
    await make_booking(customer_name="Rohit", booking_id="B1")
    svc = ReviewTokenService(db_session)
    first = await svc.create_request("B1")
    second = await svc.create_request("B1")
    second.requested_at = utcnow() + timedelta(seconds=1)
    await db_session.commit()

    review = make_review(author="Rohit K", text="great show", external_id="mine")
    result = await ReviewVerificationJob(
        db_session, fetcher=_fake_fetcher([review]), settings=make_settings(),
    ).run()

    assert result.verified == 2
    for request_id in (first.id, second.id):
        row = await _reload_request(db_session, request_id)
        assert row.external_review_ref == "mine"


@pytest.mark.asyncio
async def test_claimed_review_from_earlier_run_is_excluded(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    first = await ReviewTokenService(db_session).create_request("B1")
    review = make_review(author="Rohit K", text="great show", external_id="shared")
    settings = make_settings()

    await ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=settings).run()
    assert (await _reload_request(db_session, first.id)).status == ReviewStatus.VERIFIED.value

    await make_booking(customer_name="Rohit", booking_id="B2")
    second = await ReviewTokenService(db_session).create_request("B2")
    result = await ReviewVerificationJob(db_session, fetcher=_fake_fetcher([review]), settings=settings).run()

    assert result.verified == 0
    assert (await _reload_request(db_session, second.id)).status == ReviewStatus.PENDING.value


# ---------------------------------------------------------------------------
# Partial failure
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_row_failure_does_not_stop_the_run(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await make_booking(customer_name="Priya", booking_id="B2")
    svc = ReviewTokenService(db_session)
    first = await svc.create_request("B1")
    second = await svc.create_request("B2")
    first_id, second_id = first.id, second.id

    reviews = [
        make_review(author="Rohit K", text="great show", external_id="r1"),
        make_review(author="Priya S", text="great show", external_id="r2"),
    ]

    real_advance = ReviewRequestStore.advance
    calls = []

    async def _flaky_advance(self, request_id, target, **values):
        calls.append(request_id)
        if len(calls) == 1:
            raise OperationalError("UPDATE review_requests", {}, Exception("database is locked"))
        return await real_advance(self, request_id, target, **values)

    with patch.object(ReviewRequestStore, "advance", _flaky_advance):
        result = await ReviewVerificationJob(
            db_session, fetcher=_fake_fetcher(reviews), settings=make_settings(),
        ).run()

    assert len(calls) == 2
    assert result.scanned == 2
    assert result.verified == 1
    statuses = {
        (await _reload_request(db_session, first_id)).status,
        (await _reload_request(db_session, second_id)).status,
    }
    assert statuses == {ReviewStatus.VERIFIED.value, ReviewStatus.PENDING.value}


@pytest.mark.asyncio
async def test_verified_event_emitted(db_session, make_booking, make_settings, make_review):
    await make_booking(customer_name="Rohit", booking_id="B1")
    created = await ReviewTokenService(db_session).create_request("B1")
    review = make_review(author="Rohit K", text="great show")

    with patch(
        "review_attribution.services.review_verification_job.emit_review_event",
        new_callable=AsyncMock,
    ) as emit:
        await ReviewVerificationJob(
            db_session,
            fetcher=_fake_fetcher([review]),
            settings=make_settings(reviews_webhook_url="https://hooks.test/reviews"),
        ).run()

    emit.assert_awaited_once()
    args, kwargs = emit.call_args
    assert args[0] == "https://hooks.test/reviews"
    assert args[1].value == "review.verified"
    assert kwargs == {"review_id": created.id, "booking_id": "B1"}


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, [], {"status": "OK", "result": {"reviews": ["oops"]}}])
async def test_malformed_feed_reports_upstream_error(db_session, make_booking, make_settings, payload):
    await make_booking(customer_name="Rohit", booking_id="B1")
    await ReviewTokenService(db_session).create_request("B1")
    before = await _snapshot_rows(db_session)

    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = payload
    client = AsyncMock()
    client.get.return_value = resp
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)

    with patch("review_attribution.services.review_fetcher.httpx.AsyncClient", return_value=client):
        result = await ReviewVerificationJob(db_session, settings=make_settings()).run()

    assert result.verified == 0
    assert result.skipped == "upstream_error"
    assert await _snapshot_rows(db_session) == before
