"""Exception taxonomy for the extraction and reconciliation pipeline.

Validation errors are raised synchronously to the uploader and never
create a Job. Worker and reconciliation errors are recorded on the Job and
surface through status polling. A ``fail`` check is NOT an error: it is a
successful reconciliation that found a problem.
"""


class WhispererError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ValidationError(WhispererError):
    """Raised when an upload is rejected (wrong type, too large, unreadable)."""

    pass


class PayloadTooLarge(ValidationError):
    """Raised when an upload exceeds the configured size limit."""

    pass


class UnsupportedMediaType(ValidationError):
    """Raised when an upload is not a PDF."""

    pass


class WorkerError(WhispererError):
    """Raised when the extraction worker fails or returns unusable output."""

    pass


class WorkerTimeout(WorkerError):
    """Raised when the extraction worker does not answer in time."""

    pass


class ReconciliationError(WhispererError):
    """Raised when the reconciliation engine itself breaks."""

    pass


class NotFoundError(WhispererError):
    """Raised when a document, job or completed record does not exist."""

    pass


class JobConflictError(WhispererError):
    """Raised when a job is requested for a document with a job in flight."""

    pass


class InvalidTransition(WhispererError):
    """Raised when a job state change violates the job state machine."""

    pass
