"""
Job handler registry. One handler per JobType, checked for exhaustiveness up front.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from .context import JobContext
from .payloads import JobType

logger = logging.getLogger(__name__)

Handler = Callable[[JobContext, Any, Any], Awaitable[Any]]


class JobRegistry:
    """Maps every JobType to the coroutine that handles it."""

    def __init__(self):
        self._handlers: dict[JobType, Handler] = {}

    def register(self, job_type: JobType, handler: Handler) -> None:
        job_type = JobType(job_type)
        if job_type in self._handlers:
            logger.warning("Handler for '%s' already registered, overwriting", job_type.value)
        self._handlers[job_type] = handler
        logger.debug("Registered handler: %s → %s", job_type.value, handler.__name__)

    def get(self, job_type: JobType) -> Optional[Handler]:
        return self._handlers.get(JobType(job_type))

    def job_types(self) -> list[JobType]:
        return list(self._handlers.keys())

    def missing(self) -> list[JobType]:
        return [t for t in JobType if t not in self._handlers]

    def ensure_complete(self) -> None:
        """Raise if any JobType has no handler."""
        missing = self.missing()
        if missing:
            names = ", ".join(t.value for t in missing)
            raise ValueError(f"No handler registered for job types: {names}")


def default_registry() -> JobRegistry:
    """Registry wired to the drawings pipeline handlers."""
    from .generate_drawing_tiles import generate_drawing_tiles
    from .process_drawing_set import process_drawing_set

    registry = JobRegistry()
    registry.register(JobType.PROCESS_DRAWING_SET, process_drawing_set)
    registry.register(JobType.GENERATE_DRAWING_TILES, generate_drawing_tiles)
    registry.ensure_complete()
    return registry
