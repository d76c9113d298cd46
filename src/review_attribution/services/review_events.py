"""Outbound review events — best-effort webhook notifications."""

import logging

import httpx

from review_attribution.domain.enums import ReviewEventType

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 5.0


def build_event(event_type: ReviewEventType, review_id: str, booking_id: str) -> dict:
    return {
        "type": event_type.value,
        "data": {"review_id": review_id, "booking_id": booking_id},
    }


async def emit_review_event(
    webhook_url: str,
    event_type: ReviewEventType,
    review_id: str,
    booking_id: str,
) -> bool:
    """POST a review event to *webhook_url*. Never raises; returns True on 2xx."""
    logger.info("event: %s review=%s booking=%s", event_type.value, review_id, booking_id)
    if not webhook_url:
        return False

    payload = build_event(event_type, review_id, booking_id)
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            resp = await client.post(webhook_url, json=payload)
            resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning("Reviews webhook HTTP error: %s", exc)
        return False
    except httpx.RequestError as exc:
        logger.warning("Reviews webhook request failed: %s", exc)
        return False
    return True
