"""
Pipeline exceptions.

Every error carries a stable ``code`` so callers can map it to a
user-facing message without parsing text.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class StorageUnavailable(PipelineError):
    """Backing storage could not be reached. Transient, safe to retry."""

    code = "STORAGE_UNAVAILABLE"


class NotFoundError(PipelineError):
    """Raised when a requested object or record does not exist."""

    code = "NOT_FOUND"


class ClassificationMismatch(PipelineError):
    """Raised when a notification cannot be routed to any job kind."""

    code = "CLASSIFICATION_MISMATCH"


class JobFailed(PipelineError):
    """An external AI job reported a failure."""

    code = "JOB_FAILED"

    def __init__(self, job_kind: str, message: str):
        self.job_kind = job_kind
        super().__init__(message)


class NoSegmentsError(PipelineError):
    """Raised when an assembly job has nothing to assemble."""

    code = "NO_SEGMENTS"


class ProcessingFailed(PipelineError):
    """A media transform failed."""

    code = "VIDEO_PROCESSING_FAILED"

    def __init__(self, message: str, stderr: Optional[str] = None):
        self.stderr = stderr
        super().__init__(message)


class InvalidLocationFormat(PipelineError):
    """Raised for a malformed ``s3://bucket/key`` location."""

    code = "INVALID_LOCATION"


class WorkflowError(PipelineError):
    """Reporting back to the workflow engine failed."""

    code = "WORKFLOW_ERROR"
