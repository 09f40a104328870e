"""
Pipeline exceptions. Handlers raise these; the worker turns them into queue state.
"""


class PipelineError(Exception):
    """Base class for every error raised by the drawings pipeline."""


class JobPayloadError(PipelineError):
    """Job payload is missing required fields or has the wrong shape."""


class PdfToolError(PipelineError):
    """An external PDF utility failed, timed out, or produced unparsable output."""


class ObjectNotFoundError(PipelineError):
    """Requested object store key does not exist."""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class RecordNotFoundError(PipelineError):
    """A row referenced by a job does not exist."""


class StaleJobError(PipelineError):
    """
    The job points at a row that has since been deleted.
    Retrying can never succeed, so the worker skips it instead.
    """
