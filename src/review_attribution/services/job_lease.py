"""Job leases — database-backed mutual exclusion for background jobs.

A lease is one ``job_leases`` row per job name. Acquiring inserts the row, or
takes over a row whose lease has expired (a holder that crashed without
releasing). Releasing deletes the row only if the caller still holds it.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from review_attribution.domain.models import JobLease
from review_attribution.services.review_request_store import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 300


class JobLeaseManager:
    """Acquire and release named leases. Commits its own writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def new_holder_id() -> str:
        return secrets.token_hex(8)

    async def acquire(
        self,
        name: str,
        holder: str,
        ttl_seconds: int = DEFAULT_LEASE_SECONDS,
    ) -> bool:
        """Try to take the lease *name* for *holder*. Returns True on success."""
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        try:
            await self.db.execute(
                insert(JobLease).values(
                    name=name, holder=holder, acquired_at=now, expires_at=expires_at,
                )
            )
            await self.db.commit()
            return True
        except IntegrityError:
            await self.db.rollback()

        # Row exists: take it over only if the previous lease has run out
        result = await self.db.execute(
            update(JobLease)
            .where(JobLease.name == name, JobLease.expires_at < now)
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 1:
            logger.warning("Took over expired lease %s", name)
            return True
        return False

    async def release(self, name: str, holder: str) -> bool:
        result = await self.db.execute(
            delete(JobLease)
            .where(JobLease.name == name, JobLease.holder == holder)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1
