"""Error taxonomy for job orchestration.

Cancellation has no exception type: a cancelled job is a normal terminal
status, observable on the record, never an exception.
"""

from typing_extensions import override


class JobError(Exception):
    """Base class for all job orchestration errors."""

    def __init__(self, message: str = "Job operation failed"):
        self.message: str = message
        super().__init__(self.message)

    @override
    def __str__(self) -> str:
        return self.message


class ValidationError(JobError):
    """Malformed or missing request fields.

    Raised synchronously, before any job record exists.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field: str | None = field
        super().__init__(message)


class AdapterError(JobError):
    """Upstream provider failure.

    `transient` separates retryable network-level failures (timeouts,
    429, 5xx) from fatal rejections such as bad credentials.
    """

    def __init__(self, message: str, *, transient: bool = True, model_id: str | None = None):
        self.transient: bool = transient
        self.model_id: str | None = model_id
        super().__init__(message)


class JobTimeoutError(JobError):
    """A job did not reach a terminal status within its polling bounds."""


class NotFoundError(JobError):
    def __init__(self, job_id: str):
        self.job_id: str = job_id
        super().__init__(f"Job not found: {job_id}")


class IllegalTransitionError(JobError):
    """An event is not legal from the job's current status.

    The store discards the attempt; the record is left unchanged.
    """

    def __init__(self, job_id: str, status: str, event: str, reason: str | None = None):
        self.job_id: str = job_id
        self.status: str = status
        self.event: str = event
        detail = f"'{event}' not allowed for job {job_id} in status '{status}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
