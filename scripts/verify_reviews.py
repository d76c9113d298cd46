"""Run one review verification pass against the public review feed.

Usage:
    python scripts/verify_reviews.py [--threshold 0.3] [--dry-config]

Requires GOOGLE_PLACES_API_KEY and GOOGLE_PLACE_ID in .env.
"""

import argparse
import asyncio
import json
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)


async def verify(threshold: float | None) -> dict:
    from review_attribution.app.config import get_settings
    from review_attribution.infra.database import async_session, init_db
    from review_attribution.services.review_verification_job import ReviewVerificationJob

    settings = get_settings()
    if threshold is not None:
        settings = settings.model_copy(update={"review_match_threshold": threshold})

    await init_db()

    async with async_session() as session:
        result = await ReviewVerificationJob(session, settings=settings).run()
    return result.as_dict()


def show_config() -> dict:
    from review_attribution.app.config import get_settings
    from review_attribution.services.review_source import (
        ReviewSourceConfig,
        resolve_public_review_url,
    )

    source = ReviewSourceConfig.from_settings(get_settings())
    return {
        "can_fetch": source.can_fetch,
        "place_id": source.place_id or None,
        "review_url": resolve_public_review_url(source),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--threshold", type=float, default=None, help="Override the match threshold")
    parser.add_argument("--dry-config", action="store_true", help="Print the resolved review source and exit")
    args = parser.parse_args()

    if args.dry_config:
        print(json.dumps(show_config(), indent=2))
        return 0

    try:
        result = asyncio.run(verify(args.threshold))
    except Exception:
        logger.exception("Review verification failed")
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
