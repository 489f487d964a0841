"""cl_image_jobs - Image generation and editing job orchestration."""

from .adapters.base import ModelAdapter
from .adapters.registry import AdapterRegistry
from .common.errors import (
    AdapterError,
    IllegalTransitionError,
    JobError,
    JobTimeoutError,
    NotFoundError,
    ValidationError,
)
from .common.job_store import JobStore
from .common.progressive_preview import PreviewState, ProgressivePreview
from .common.schema_job import EditParams, GenerationParams
from .common.schema_job_record import JobHandle, JobRecord, JobSnapshot, JobStatus
from .config import Settings
from .manager import JobManager, PollingPolicy

__version__ = "0.1.0"

__all__ = [
    "AdapterError",
    "AdapterRegistry",
    "EditParams",
    "GenerationParams",
    "IllegalTransitionError",
    "JobError",
    "JobHandle",
    "JobManager",
    "JobRecord",
    "JobSnapshot",
    "JobStatus",
    "JobStore",
    "JobTimeoutError",
    "ModelAdapter",
    "NotFoundError",
    "PollingPolicy",
    "PreviewState",
    "ProgressivePreview",
    "Settings",
    "ValidationError",
    "__version__",
]
