"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./review_attribution.db"

    # Google Places review source
    google_places_api_key: str = ""
    google_place_id: str = Field(
        default="",
        validation_alias=AliasChoices("google_place_id", "GOOGLE_PLACE_ID", "PLACE_ID"),
    )
    review_override_url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "review_override_url", "REVIEW_OVERRIDE", "GOOGLE_REVIEW_URL", "REVIEW_URL"
        ),
    )

    # Links handed to customers
    public_base_url: str = "http://localhost:8000"

    # Verification job
    review_match_threshold: float = 0.2
    review_verification_method: str = "gmaps"
    review_fetch_timeout_seconds: float = 10.0
    review_verification_interval_minutes: int = 60  # 0 disables the in-process loop
    review_job_lease_seconds: int = 300

    # Confirmation
    review_token_ttl_hours: int = 0  # 0 means tokens never expire
    reviews_webhook_url: str = ""

    # Internal scheduler endpoint
    internal_token: str = "change-me-in-production"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {
        "env_file": str(_ENV_FILE),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
