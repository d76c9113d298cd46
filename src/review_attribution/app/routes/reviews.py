"""Review routes — review link issuing, customer confirmation and review config."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from review_attribution.app.config import get_settings
from review_attribution.app.routes.review_scheduler import verify_internal_token
from review_attribution.domain.enums import ReviewEventType
from review_attribution.domain.schemas import (
    ReviewConfigResponse,
    ReviewConfirm,
    ReviewConfirmResponse,
    ReviewRequestCreate,
    ReviewRequestCreated,
    ReviewRequestSummary,
    ReviewWebhookEvent,
)
from review_attribution.infra.database import get_db
from review_attribution.services.exceptions import NotFoundError, TokenExpiredError
from review_attribution.services.review_events import emit_review_event
from review_attribution.services.review_source import (
    ReviewSourceConfig,
    build_confirmation_url,
    resolve_public_review_url,
)
from review_attribution.services.review_token_service import ReviewTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.get("/config", response_model=ReviewConfigResponse)
async def review_config(response: Response):
    """Public "write a review" link for the business, or null when unconfigured."""
    # Clients must not cache a null from before the listing was configured
    response.headers["Cache-Control"] = "no-store"
    try:
        source = ReviewSourceConfig.from_settings(get_settings())
        review_url = resolve_public_review_url(source)
    except Exception as e:
        logger.error("Failed to resolve review URL: %s", e)
        review_url = None
    logger.debug("Resolved review URL: %s", review_url or "<none>")
    return ReviewConfigResponse(review_url=review_url)


@router.post("/request", response_model=ReviewRequestCreated)
async def create_review_request(
    body: ReviewRequestCreate,
    db: AsyncSession = Depends(get_db),
):
    """Issue a review link for a booking. Each call creates an independent token."""
    settings = get_settings()
    service = ReviewTokenService(db)

    try:
        review = await service.create_request(
            booking_id=body.booking_id,
            customer_name=body.customer_name,
            customer_phone=body.customer_phone,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ReviewRequestCreated(
        request_id=review.id,
        token=review.token,
        review_url=build_confirmation_url(settings.public_base_url, review.token),
        public_review_url=resolve_public_review_url(ReviewSourceConfig.from_settings(settings)),
    )


@router.post("/confirm", response_model=ReviewConfirmResponse)
async def confirm_review(
    body: ReviewConfirm,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Customer says they left a review. Repeat calls succeed without changes."""
    settings = get_settings()
    service = ReviewTokenService(db, token_ttl_hours=settings.review_token_ttl_hours)

    try:
        outcome = await service.confirm(body.token, note=body.note)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TokenExpiredError as e:
        raise HTTPException(status_code=410, detail=str(e))

    if outcome.advanced:
        background_tasks.add_task(
            emit_review_event,
            settings.reviews_webhook_url,
            ReviewEventType.SUBMITTED,
            outcome.review.id,
            outcome.review.booking_id,
        )

    return ReviewConfirmResponse(ok=True, booking_id=outcome.review.booking_id)


@router.get("/booking/{booking_id}", response_model=list[ReviewRequestSummary])
async def list_booking_reviews(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
):
    """All review requests for a booking, newest first."""
    service = ReviewTokenService(db)
    reviews = await service.list_for_booking(booking_id)
    return [ReviewRequestSummary.model_validate(r) for r in reviews]


# ---------------------------------------------------------------------------
# Inbound review events from external systems
# ---------------------------------------------------------------------------

integrations_router = APIRouter(
    prefix="/api/integrations",
    tags=["reviews"],
    dependencies=[Depends(verify_internal_token)],
)


@integrations_router.post("/reviews-webhook")
async def reviews_webhook(
    body: ReviewWebhookEvent,
    db: AsyncSession = Depends(get_db),
):
    """Accept review events; ``review.submitted`` sets the booking's review flag."""
    if body.type == ReviewEventType.SUBMITTED.value and body.data and body.data.booking_id:
        service = ReviewTokenService(db)
        await service.flag_booking(body.data.booking_id)
    else:
        logger.info("Ignoring reviews webhook event type=%s", body.type)
    return {"ok": True}
