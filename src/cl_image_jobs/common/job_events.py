"""Events that drive the job state machine.

Each event is a small frozen model; the JobStore decides whether it is legal
from the job's current status.
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from .schema_job_record import ErrorKind


class JobEvent(BaseModel):
    name: ClassVar[str] = "event"

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class Accepted(JobEvent):
    """The adapter picked the job up: queued -> processing."""

    name: ClassVar[str] = "adapter-accepted"


class ProgressUpdate(JobEvent):
    name: ClassVar[str] = "progress-update"

    progress: int = Field(ge=0, le=100)
    preview_urls: tuple[str, ...] = ()
    eta: float | None = Field(default=None, ge=0)


class Completed(JobEvent):
    name: ClassVar[str] = "completed"

    final_url: str = Field(min_length=1)
    preview_urls: tuple[str, ...] = ()


class Failed(JobEvent):
    name: ClassVar[str] = "failed"

    message: str = Field(min_length=1)
    kind: ErrorKind = "provider"


class CancelRequested(JobEvent):
    name: ClassVar[str] = "cancel-requested"
