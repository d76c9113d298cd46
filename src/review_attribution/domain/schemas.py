"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Review requests
# ---------------------------------------------------------------------------


class ReviewRequestCreate(BaseModel):
    """Staff request for a new review link."""

    booking_id: str = Field(min_length=1)
    customer_name: str | None = None
    customer_phone: str | None = None


class ReviewRequestCreated(BaseModel):
    request_id: str
    token: str
    review_url: str
    public_review_url: str | None = None


class ReviewRequestSummary(BaseModel):
    """Audit view of a review request. The token is never echoed back."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    customer_name: str | None = None
    customer_phone: str | None = None
    status: str
    requested_at: datetime | None = None
    submitted_at: datetime | None = None
    verified_at: datetime | None = None
    verification_method: str | None = None
    external_source_ref: str | None = None
    external_review_ref: str | None = None
    match_score: float | None = None
    note: str | None = None


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


class ReviewConfirm(BaseModel):
    token: str | None = None
    note: str | None = Field(default=None, max_length=2000)

    @field_validator("token", mode="before")
    @classmethod
    def _non_string_token_is_unknown(cls, value):
        # A malformed token gets the same 404 as an unknown one, not a 422
        return value if isinstance(value, str) else None


class ReviewConfirmResponse(BaseModel):
    ok: bool = True
    booking_id: str


class ReviewConfigResponse(BaseModel):
    review_url: str | None = None


# ---------------------------------------------------------------------------
# Webhook / scheduler
# ---------------------------------------------------------------------------


class ReviewWebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    review_id: str | None = None
    booking_id: str | None = None


class ReviewWebhookEvent(BaseModel):
    type: str
    data: ReviewWebhookData | None = None


class VerificationRunResponse(BaseModel):
    verified: int
    fetched: int
    scanned: int
    skipped: str | None = None
