"""FastAPI application entry point for the review attribution API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from review_attribution.app.config import get_settings
from review_attribution.infra.database import async_session, init_db
from review_attribution.services.review_verification_job import ReviewVerificationJob

logger = logging.getLogger(__name__)


async def review_verification_loop(interval_minutes: int):
    """Run the review verification job every *interval_minutes*."""
    while True:
        try:
            async with async_session() as db:
                result = await ReviewVerificationJob(db).run()
                if result.verified:
                    logger.info("Review verification: verified %d requests", result.verified)
        except Exception as e:
            logger.error("Review verification loop error: %s", e)
        await asyncio.sleep(interval_minutes * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start the verification loop."""
    await init_db()

    settings = get_settings()
    task = None
    if settings.review_verification_interval_minutes > 0:
        task = asyncio.create_task(
            review_verification_loop(settings.review_verification_interval_minutes)
        )
    else:
        logger.info("Review verification loop disabled")
    yield
    if task is not None:
        task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Review Attribution API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from review_attribution.app.routes.reviews import router as reviews_router, integrations_router
from review_attribution.app.routes.review_scheduler import router as review_scheduler_router

app.include_router(reviews_router)
app.include_router(integrations_router)
app.include_router(review_scheduler_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "review-attribution"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "review_attribution.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
