"""Exception types raised by the review attribution services."""

from __future__ import annotations


class ReviewAttributionError(Exception):
    """Base class for review attribution failures."""


class NotFoundError(ReviewAttributionError):
    """A referenced booking or token does not exist. Caller-correctable."""


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: str) -> None:
        self.booking_id = booking_id
        super().__init__("Booking not found")


class InvalidTokenError(NotFoundError):
    """No review request matches the token.

    Malformed and unknown tokens raise the same error with the same message.
    """

    def __init__(self) -> None:
        super().__init__("Invalid token")


class TokenExpiredError(ReviewAttributionError):
    """A pending request outlived the configured token time-to-live."""

    def __init__(self) -> None:
        super().__init__("Token expired")


class ConfigurationError(ReviewAttributionError):
    """Review source credentials or listing id are missing."""


class UpstreamError(ReviewAttributionError):
    """Fetching the public review feed failed (network, HTTP or API status)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
