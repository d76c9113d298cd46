"""Review matcher — decides whether a public review belongs to a review request.

Two stages, both pure and deterministic:

1. Candidate filter: a cheap identity check. The customer's name must appear
   (case-insensitively) in the review's author name, or the customer's phone
   must appear verbatim in the review text.
2. Jaccard similarity between the customer's own words (note + name) and the
   review (text + author). The best-scoring candidate is accepted only when it
   reaches the threshold.

The identity filter does the primary matching; the threshold keeps two
reviewers with the same first name from being confused.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Protocol

from review_attribution.services.review_fetcher import ExternalReview

DEFAULT_MATCH_THRESHOLD = 0.2

_NON_WORD = re.compile(r"\W+")


class MatchableRequest(Protocol):
    customer_name: str | None
    customer_phone: str | None
    note: str | None


@dataclass(frozen=True)
class MatchResult:
    review: ExternalReview
    score: float


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def tokenize(text: str | None) -> set[str]:
    """Lowercase word set of *text*, split on runs of non-word characters."""
    if not text:
        return set()
    return {tok for tok in _NON_WORD.split(text.lower()) if tok}


def similarity(a: str | None, b: str | None) -> float:
    """Jaccard similarity of the word sets of *a* and *b*, in [0, 1]."""
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    union = len(tokens_a | tokens_b) or 1
    return len(tokens_a & tokens_b) / union


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str:
    return (value or "").strip()


def has_identity(request: MatchableRequest) -> bool:
    """True if the request carries a name or phone the filter can use."""
    return bool(_clean(request.customer_name) or _clean(request.customer_phone))


def passes_candidate_filter(request: MatchableRequest, review: ExternalReview) -> bool:
    """Identity check: name in the author (case-insensitive) or phone in the text.

    Name and phone are compared with surrounding whitespace stripped; a
    whitespace-only value counts as absent. The inner text is compared verbatim.
    """
    name = _clean(request.customer_name)
    if name and name.lower() in (review.author_display_name or "").lower():
        return True

    phone = _clean(request.customer_phone)
    if phone and phone in (review.text or ""):
        return True

    return False


def score_candidate(request: MatchableRequest, review: ExternalReview) -> float:
    customer_side = f"{request.note or ''} {request.customer_name or ''}"
    review_side = f"{review.text or ''} {review.author_display_name or ''}"
    return similarity(customer_side, review_side)


def find_best_match(
    request: MatchableRequest,
    reviews: Iterable[ExternalReview],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    exclude_ids: Collection[str] = (),
) -> MatchResult | None:
    """Return the accepted match for *request*, or None.

    Reviews whose external id is in *exclude_ids* are never considered. On a
    score tie the earlier review in *reviews* wins.
    """
    if not has_identity(request):
        return None

    best: MatchResult | None = None
    for review in reviews:
        if review.external_id in exclude_ids:
            continue
        if not passes_candidate_filter(request, review):
            continue
        score = score_candidate(request, review)
        if best is None or score > best.score:
            best = MatchResult(review=review, score=score)

    if best is None or best.score < threshold:
        return None
    return best
