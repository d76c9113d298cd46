"""External review fetcher wrapping the Google Places Details API.

Returns the small snapshot of most-recent public reviews Google exposes for a
listing. One attempt per call, bounded by a timeout; the next scheduled
verification run is the retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from review_attribution.services.exceptions import ConfigurationError, UpstreamError
from review_attribution.services.review_source import ReviewSourceConfig

logger = logging.getLogger(__name__)

GOOGLE_PLACE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"

DEFAULT_TIMEOUT_SECONDS = 10.0

UNEXPECTED_PAYLOAD = "Google Places API returned an unexpected payload"


def _published_at(epoch) -> datetime | None:
    if not isinstance(epoch, (int, float)) or isinstance(epoch, bool):
        return None
    try:
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class ExternalReview:
    author_display_name: str
    text: str
    published_at: datetime | None
    external_id: str


class GooglePlacesReviewFetcher:
    """Async review fetcher backed by the Google Places Details API."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    async def fetch_recent_reviews(self, source: ReviewSourceConfig) -> list[ExternalReview]:
        """Fetch the listing's recent public reviews.

        Raises ConfigurationError when credentials are missing and
        UpstreamError for any network, HTTP or API-level failure.
        """
        if not source.can_fetch:
            raise ConfigurationError("Missing GOOGLE_PLACES_API_KEY or GOOGLE_PLACE_ID")

        params = {
            "place_id": source.place_id,
            "fields": "reviews",
            "key": source.api_key,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(GOOGLE_PLACE_DETAILS_URL, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"Google Places API HTTP error: {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamError(f"Google Places API request failed: {exc!r}") from exc
        except ValueError as exc:
            raise UpstreamError("Google Places API returned invalid JSON") from exc

        return self._parse_google_response(data)

    def _parse_google_response(self, data: dict) -> list[ExternalReview]:
        """Extract reviews from the Place Details JSON response."""
        if not isinstance(data, dict):
            raise UpstreamError(UNEXPECTED_PAYLOAD)

        status = data.get("status")
        if status != "OK":
            raise UpstreamError(f"Google Places API returned status: {status}")

        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise UpstreamError(UNEXPECTED_PAYLOAD)
        raw_reviews = result.get("reviews") or []
        if not isinstance(raw_reviews, list):
            raise UpstreamError(UNEXPECTED_PAYLOAD)

        reviews: list[ExternalReview] = []
        for raw in raw_reviews:
            if not isinstance(raw, dict):
                raise UpstreamError(UNEXPECTED_PAYLOAD)
            epoch = raw.get("time")
            external_id = str(epoch) if epoch is not None else str(raw.get("author_url") or "")
            reviews.append(
                ExternalReview(
                    author_display_name=str(raw.get("author_name") or ""),
                    text=str(raw.get("text") or ""),
                    published_at=_published_at(epoch),
                    external_id=external_id,
                )
            )

        logger.debug("Parsed %d reviews from Google Places", len(reviews))
        return reviews
