"""Common module - protocols, schemas, the job store and preview assembly."""

from .file_storage import FileStorage
from .job_store import JobStore
from .schema_job import EditParams, GenerationParams
from .schema_job_record import JobRecord, JobStatus

__all__ = [
    "EditParams",
    "FileStorage",
    "GenerationParams",
    "JobRecord",
    "JobStatus",
    "JobStore",
]
