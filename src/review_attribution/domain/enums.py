"""Domain enumerations for the review attribution flow.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class ReviewStatus(str, Enum):
    """Lifecycle of a review request. Declaration order is the progress order."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    VERIFIED = "verified"


class ReviewEventType(str, Enum):
    """Events emitted to (and accepted from) the reviews webhook."""

    SUBMITTED = "review.submitted"
    VERIFIED = "review.verified"


class VerificationSkipReason(str, Enum):
    """Why a verification run did no matching work."""

    LOCKED = "locked"
    NOT_CONFIGURED = "not_configured"
    UPSTREAM_ERROR = "upstream_error"
