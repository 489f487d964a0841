from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.succeeded, JobStatus.failed, JobStatus.cancelled})

JobKind = Literal["generate", "edit"]
ErrorKind = Literal["validation", "adapter", "timeout", "provider"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """Authoritative job representation held by the JobStore (and wire format).

    Records are frozen; the store replaces them on every transition.
    """

    job_id: str
    model_id: str
    kind: JobKind = "generate"

    status: JobStatus = JobStatus.queued
    progress: int = Field(0, ge=0, le=100)
    preview_urls: tuple[str, ...] = ()
    final_url: str | None = None

    error_message: str | None = None
    error_kind: ErrorKind | None = None
    eta: float | None = Field(default=None, ge=0, description="Estimated seconds remaining")

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobHandle(BaseModel):
    """Adapter-issued identity of a unit of backend work."""

    model_id: str
    reference: str = Field(description="Provider-side job/request id")

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class JobSnapshot(BaseModel):
    """Uniform point-in-time status read, normalized by every adapter."""

    status: JobStatus
    progress: int = Field(0, ge=0, le=100)
    preview_urls: list[str] = Field(default_factory=list)
    final_url: str | None = None
    error_message: str | None = None
    eta: float | None = Field(default=None, ge=0)


class JobCreatedResponse(BaseModel):
    job_id: str
    status: JobStatus
    model_id: str
