"""
Outbox worker loop.

claim batch → run handlers concurrently → record outcome → repeat.
Sleeps for the poll interval only when a cycle found nothing to do.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .core.errors import StaleJobError
from .jobs.context import JobContext
from .jobs.payloads import PAYLOAD_TYPES, decode_payload
from .jobs.queue import (
    ClaimedJob, RetryPolicy, claim_jobs, complete_job, fail_job, requeue_stale_claims, skip_job,
)
from .jobs.registry import JobRegistry
from .models.base import utcnow

logger = logging.getLogger(__name__)

# asyncpg surfaces dropped or refused connections as raw OSError
DB_ERRORS = (SQLAlchemyError, OSError)


class Worker:
    def __init__(
        self,
        ctx: JobContext,
        registry: JobRegistry,
        batch_size: int = 5,
        poll_interval: float = 5.0,
        policy: Optional[RetryPolicy] = None,
        claim_timeout: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        registry.ensure_complete()
        self.ctx = ctx
        self.registry = registry
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.policy = policy or RetryPolicy()
        self.claim_timeout = claim_timeout
        self.clock = clock
        self.is_running = False
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Run until stop() is called. In-flight jobs always finish."""
        if self.is_running:
            logger.info("Worker is already running")
            return

        logger.info(
            "Starting worker loop (batch=%d, poll=%.1fs)", self.batch_size, self.poll_interval
        )
        self.is_running = True
        self._stop_event.clear()
        try:
            await self.recover_stale_claims()
        except DB_ERRORS as e:
            logger.error("Error requeueing stale claims: %s", e)

        while self.is_running:
            try:
                processed, _ = await self.run_once()
            except DB_ERRORS as e:
                logger.error("Error polling jobs: %s", e)
                processed = 0

            if processed == 0 and self.is_running:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("Worker stopped")

    def stop(self) -> None:
        logger.info("Stopping worker...")
        self.is_running = False
        self._stop_event.set()

    async def recover_stale_claims(self) -> int:
        async with self.ctx.session_factory() as db:
            count = await requeue_stale_claims(db, self.claim_timeout, now=self.clock())
            await db.commit()
        if count:
            logger.warning("Requeued %d jobs left claimed by a dead worker", count)
        return count

    async def run_once(self) -> tuple[int, int]:
        """One claim/dispatch cycle. Returns (jobs handled, of which failed)."""
        async with self.ctx.session_factory() as db:
            jobs = await claim_jobs(
                db, self.registry.job_types(), self.batch_size, now=self.clock()
            )
            await db.commit()

        if not jobs:
            return 0, 0

        logger.info("Processing %d jobs", len(jobs))
        results = await asyncio.gather(*(self.process_job(job) for job in jobs))
        failed = sum(1 for ok in results if not ok)
        return len(jobs), failed

    async def process_job(self, job: ClaimedJob) -> bool:
        """Run one job and record its outcome. Never raises on handler failure."""
        start = time.monotonic()
        logger.info("Processing job %s (%s)", job.id, job.job_type.value)

        try:
            handler = self.registry.get(job.job_type)
            payload = decode_payload(PAYLOAD_TYPES[job.job_type], job.payload)
            result = await handler(self.ctx, job, payload)
        except StaleJobError as e:
            logger.warning("Skipping job %s: %s", job.id, e)
            await self._record(skip_job, job.id, str(e))
            return True
        except Exception as e:
            elapsed = (time.monotonic() - start) * 1000
            error = str(e) or e.__class__.__name__
            logger.error("Failed job %s after %.0fms: %s", job.id, elapsed, error)
            await self._record(fail_job, job, error, self.policy, now=self.clock())
            return False

        await self._record(complete_job, job.id)
        elapsed = (time.monotonic() - start) * 1000
        summary = result.summary() if hasattr(result, "summary") else ""
        logger.info("Completed job %s in %.0fms %s", job.id, elapsed, summary)
        return True

    async def _record(self, operation, *args, **kwargs):
        """Persist a job outcome in its own transaction."""
        try:
            async with self.ctx.session_factory() as db:
                result = await operation(db, *args, **kwargs)
                await db.commit()
                return result
        except DB_ERRORS as e:
            # Job stays claimed; recover_stale_claims picks it up later
            job_id = getattr(args[0], "id", args[0])
            logger.error("Failed to record outcome for job %s: %s", job_id, e)
            return None
