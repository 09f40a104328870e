"""
Outbox queue operations: enqueue, claim, record outcomes.

State machine per job:
    pending → processing (claimed) → completed | pending (retry) | failed

Functions flush but never commit; the caller owns the transaction. A claim
must be committed in the same transaction that selected the rows so the
row locks cover the status flip.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.job import OutboxJob, JobStatus
from .payloads import JobType

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: int = 2
    backoff_unit: timedelta = timedelta(minutes=1)

    def delay(self, retry_count: int) -> timedelta:
        """Delay before the attempt that follows `retry_count` failures."""
        return self.backoff_unit * (self.backoff_base ** retry_count)


@dataclass(frozen=True)
class ClaimedJob:
    """Detached snapshot of a claimed outbox row."""

    id: str
    org_id: str
    job_type: JobType
    payload: dict
    retry_count: int
    run_at: datetime

    @classmethod
    def from_row(cls, row: OutboxJob) -> "ClaimedJob":
        return cls(
            id=row.id,
            org_id=row.org_id,
            job_type=JobType(row.job_type),
            payload=dict(row.payload or {}),
            retry_count=row.retry_count or 0,
            run_at=row.run_at,
        )


def _truncate(message: str) -> str:
    return message if len(message) <= MAX_ERROR_LENGTH else message[:MAX_ERROR_LENGTH]


async def enqueue_job(
    db: AsyncSession,
    org_id: str,
    job_type: JobType,
    payload: Union[BaseModel, dict],
    run_at: Optional[datetime] = None,
) -> OutboxJob:
    """Insert a pending job. Runs as soon as run_at (default: now) has passed."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")

    job = OutboxJob(
        org_id=org_id,
        job_type=JobType(job_type).value,
        payload=payload,
        status=JobStatus.PENDING.value,
        retry_count=0,
        run_at=run_at or utcnow(),
    )
    db.add(job)
    await db.flush()
    logger.debug("Enqueued %s job %s for org %s", job.job_type, job.id, org_id)
    return job


async def claim_jobs(
    db: AsyncSession,
    job_types: Iterable[JobType],
    limit: int,
    now: Optional[datetime] = None,
) -> list[ClaimedJob]:
    """
    Select up to `limit` eligible jobs and mark them processing.
    Rows locked by another worker's claim are skipped, not waited on.
    """
    now = now or utcnow()
    types = [JobType(t).value for t in job_types]

    result = await db.execute(
        select(OutboxJob)
        .where(
            OutboxJob.status == JobStatus.PENDING.value,
            OutboxJob.job_type.in_(types),
            OutboxJob.run_at <= now,
        )
        .order_by(OutboxJob.run_at, OutboxJob.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    rows = result.scalars().all()

    for row in rows:
        row.status = JobStatus.PROCESSING.value
        row.claimed_at = now
    await db.flush()

    return [ClaimedJob.from_row(row) for row in rows]


async def complete_job(db: AsyncSession, job_id: str) -> None:
    await db.execute(
        update(OutboxJob)
        .where(OutboxJob.id == job_id)
        .values(status=JobStatus.COMPLETED.value, last_error=None)
    )


async def skip_job(db: AsyncSession, job_id: str, reason: str) -> None:
    """Terminal success-with-note for jobs whose target no longer exists."""
    await db.execute(
        update(OutboxJob)
        .where(OutboxJob.id == job_id)
        .values(status=JobStatus.COMPLETED.value, last_error=_truncate(f"skipped: {reason}"))
    )


async def fail_job(
    db: AsyncSession,
    job: ClaimedJob,
    error: str,
    policy: RetryPolicy,
    now: Optional[datetime] = None,
) -> JobStatus:
    """
    Record a failed attempt. Reschedules with exponential backoff while
    attempts remain, otherwise marks the job failed for good.
    """
    now = now or utcnow()
    retry_count = job.retry_count + 1
    should_retry = retry_count < policy.max_attempts
    status = JobStatus.PENDING if should_retry else JobStatus.FAILED

    values = {
        "status": status.value,
        "retry_count": retry_count,
        "last_error": _truncate(error),
    }
    if should_retry:
        values["run_at"] = now + policy.delay(retry_count)

    await db.execute(update(OutboxJob).where(OutboxJob.id == job.id).values(**values))
    return status


async def requeue_stale_claims(
    db: AsyncSession,
    older_than: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Return jobs stuck in processing (crashed worker) to the pending pool."""
    now = now or utcnow()
    result = await db.execute(
        update(OutboxJob)
        .where(
            OutboxJob.status == JobStatus.PROCESSING.value,
            OutboxJob.claimed_at < now - older_than,
        )
        .values(status=JobStatus.PENDING.value, claimed_at=None)
    )
    return result.rowcount or 0
