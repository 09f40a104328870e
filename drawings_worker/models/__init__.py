"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import OrgBase
from .file import File
from .drawing import (
    DrawingSet, DrawingSetStatus, DrawingRevision, DrawingSheet, DrawingSheetVersion,
)
from .job import OutboxJob, JobStatus

__all__ = [
    "OrgBase",
    "File",
    "DrawingSet", "DrawingSetStatus", "DrawingRevision", "DrawingSheet", "DrawingSheetVersion",
    "OutboxJob", "JobStatus",
]
