"""Review source configuration and customer-facing review links."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

from review_attribution.app.config import Settings

GOOGLE_WRITE_REVIEW_URL = "https://search.google.com/local/writereview"


@dataclass(frozen=True)
class ReviewSourceConfig:
    """Credentials and listing id for the public review integration."""

    api_key: str = ""
    place_id: str = ""
    override_url: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> ReviewSourceConfig:
        return cls(
            api_key=settings.google_places_api_key.strip(),
            place_id=settings.google_place_id.strip(),
            override_url=settings.review_override_url.strip(),
        )

    @property
    def can_fetch(self) -> bool:
        """True when both credentials needed to read the review feed are set."""
        return bool(self.api_key and self.place_id)


def resolve_public_review_url(source: ReviewSourceConfig) -> str | None:
    """Where customers go to write the public review.

    Precedence: explicit override URL, then the Google write-review link built
    from the place id, then nothing.
    """
    if source.override_url:
        return source.override_url
    if source.place_id:
        return f"{GOOGLE_WRITE_REVIEW_URL}?placeid={quote(source.place_id, safe='')}"
    return None


def build_confirmation_url(base_url: str, token: str) -> str:
    """Link to the review page carrying the request token as a query parameter."""
    return f"{base_url.rstrip('/')}/reviews?token={quote(token, safe='')}"
