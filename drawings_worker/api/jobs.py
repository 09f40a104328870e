"""
Job endpoints. Enqueue from the upload flow; drain one batch from a cron trigger.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core.errors import JobPayloadError
from ..jobs.context import JobContext
from ..jobs.payloads import PAYLOAD_TYPES, JobType, decode_payload
from ..jobs.queue import enqueue_job
from .dependencies import get_context

logger = logging.getLogger(__name__)

jobs_router = APIRouter(tags=["jobs"])


class EnqueueJobRequest(BaseModel):
    org_id: str = Field(min_length=1)
    job_type: JobType
    payload: dict = Field(default_factory=dict)
    run_at: Optional[datetime] = None


class JobResponse(BaseModel):
    id: str
    job_type: str
    status: str
    run_at: datetime


class ProcessOutboxResponse(BaseModel):
    processed: int
    failed: int


@jobs_router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: EnqueueJobRequest,
    ctx: JobContext = Depends(get_context),
):
    """Validate the payload for its job type and insert a pending job."""
    try:
        payload = decode_payload(PAYLOAD_TYPES[request.job_type], request.payload)
    except JobPayloadError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    async with ctx.session_factory() as db:
        job = await enqueue_job(db, request.org_id, request.job_type, payload, run_at=request.run_at)
        await db.commit()

    logger.info("Enqueued %s job %s via API", job.job_type, job.id)
    return JobResponse(id=job.id, job_type=job.job_type, status=job.status, run_at=job.run_at)


@jobs_router.post("/jobs/process-outbox", response_model=ProcessOutboxResponse)
async def process_outbox(ctx: JobContext = Depends(get_context)):
    """Run one claim/dispatch cycle in-process."""
    from ..factory import create_worker

    worker = create_worker(ctx)
    processed, failed = await worker.run_once()
    return ProcessOutboxResponse(processed=processed, failed=failed)
