"""Review request state machine — a three-step lattice that only moves forward.

pending --confirm--> submitted
pending --match----> verified
submitted --match--> verified

``verified`` is terminal. Writers never assign a status blindly; they ask
:func:`earlier_statuses` for the set of states the row may currently be in and
put that set in the WHERE clause of the UPDATE (compare-and-advance).
"""

from review_attribution.domain.enums import ReviewStatus

S = ReviewStatus

STATUS_ORDER: tuple[ReviewStatus, ...] = (S.PENDING, S.SUBMITTED, S.VERIFIED)

# Timestamp column stamped on first entry into each state
ENTRY_TIMESTAMP_FIELDS: dict[ReviewStatus, str] = {
    S.PENDING: "requested_at",
    S.SUBMITTED: "submitted_at",
    S.VERIFIED: "verified_at",
}


def _coerce(status: ReviewStatus | str) -> ReviewStatus:
    return status if isinstance(status, ReviewStatus) else ReviewStatus(status)


def rank(status: ReviewStatus | str) -> int:
    """Position of *status* in the pending < submitted < verified ordering."""
    return STATUS_ORDER.index(_coerce(status))


def can_advance(current: ReviewStatus | str, target: ReviewStatus | str) -> bool:
    """Return True if moving from *current* to *target* is strictly forward."""
    return rank(current) < rank(target)


def earlier_statuses(target: ReviewStatus | str) -> list[str]:
    """Status values a row must hold for an advance to *target* to apply.

    Empty for ``pending``: nothing ever advances into the initial state.
    """
    return [s.value for s in STATUS_ORDER[: rank(target)]]
