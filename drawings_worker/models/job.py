"""
Outbox job queue. At-least-once work queue with claim, retry and backoff.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, Integer, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import OrgBase, utcnow


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # claimed, invisible to other workers
    COMPLETED = "completed"
    FAILED = "failed"


class OutboxJob(OrgBase):
    __tablename__ = "outbox"
    __table_args__ = (
        Index("outbox_claim_idx", "status", "job_type", "run_at"),
    )

    job_type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=JobStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str] = mapped_column(Text, nullable=True)
