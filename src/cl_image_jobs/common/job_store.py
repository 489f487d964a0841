"""JobStore - authoritative, in-memory record of job identity and status.

State machine:

    queued      --adapter-accepted-->      processing
    processing  --progress-update(p)-->    processing   (p >= current progress)
    processing  --completed(final_url)-->  succeeded    (terminal)
    queued|processing --failed(message)--> failed       (terminal)
    queued|processing --cancel-requested-> cancelled    (terminal)

A regressive progress value is rejected with IllegalTransitionError rather
than clamped, so progress stays monotonic. Terminal records accept only a
re-application of the event that terminated them, which returns the record
unchanged.
"""

import threading
from uuid import uuid4

from loguru import logger

from .errors import IllegalTransitionError, NotFoundError
from .job_events import (
    Accepted,
    CancelRequested,
    Completed,
    Failed,
    JobEvent,
    ProgressUpdate,
)
from .schema_job_record import JobKind, JobRecord, JobStatus, utcnow

_TERMINAL_EVENT = {
    JobStatus.succeeded: Completed,
    JobStatus.failed: Failed,
    JobStatus.cancelled: CancelRequested,
}


def merge_preview_urls(existing: tuple[str, ...], incoming: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """Append unseen references to `existing`, keeping order and never reordering."""
    seen = set(existing)
    merged = list(existing)
    for url in incoming:
        if url and url not in seen:
            seen.add(url)
            merged.append(url)
    return tuple(merged)


class JobStore:
    """Process-local job store with serialized transitions.

    Empty on construction; `clear()` on shutdown or test teardown. Records are
    frozen models, so callers can hold a returned record without it changing
    underneath them.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._lock: threading.Lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def create(self, model_id: str, kind: JobKind = "generate") -> JobRecord:
        record = JobRecord(job_id=str(uuid4()), model_id=model_id, kind=kind)
        with self._lock:
            self._jobs[record.job_id] = record
        logger.debug(f"Job {record.job_id} created for model '{model_id}'")
        return record

    def get(self, job_id: str) -> JobRecord:
        with self._lock:
            return self._get_locked(job_id)

    def list_jobs(self) -> list[JobRecord]:
        with self._lock:
            return list(self._jobs.values())

    def remove(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def transition(self, job_id: str, event: JobEvent) -> JobRecord:
        """Apply `event` to the job and return the resulting record.

        Raises:
            NotFoundError: unknown job id.
            IllegalTransitionError: event not legal from the current status;
                the stored record is left untouched.
        """
        with self._lock:
            record = self._get_locked(job_id)
            updated = self._apply(record, event)
            if updated is not record:
                self._jobs[job_id] = updated
                if updated.status != record.status:
                    logger.info(
                        f"Job {job_id}: {record.status.value} -> {updated.status.value} ({event.name})"
                    )
            return updated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_locked(self, job_id: str) -> JobRecord:
        record = self._jobs.get(job_id)
        if record is None:
            raise NotFoundError(job_id)
        return record

    def _apply(self, record: JobRecord, event: JobEvent) -> JobRecord:
        status = record.status

        if status.is_terminal:
            if isinstance(event, _TERMINAL_EVENT[status]):
                return record
            raise IllegalTransitionError(record.job_id, status.value, event.name, "job is terminal")

        match event:
            case Accepted() if status == JobStatus.queued:
                return self._update(record, status=JobStatus.processing)

            case ProgressUpdate() if status == JobStatus.processing:
                if event.progress < record.progress:
                    raise IllegalTransitionError(
                        record.job_id,
                        status.value,
                        event.name,
                        f"progress {event.progress} < current {record.progress}",
                    )
                previews = merge_preview_urls(record.preview_urls, event.preview_urls)
                if (
                    event.progress == record.progress
                    and previews == record.preview_urls
                    and event.eta == record.eta
                ):
                    return record
                return self._update(
                    record, progress=event.progress, preview_urls=previews, eta=event.eta
                )

            case Completed() if status == JobStatus.processing:
                return self._update(
                    record,
                    status=JobStatus.succeeded,
                    progress=100,
                    preview_urls=merge_preview_urls(record.preview_urls, event.preview_urls),
                    final_url=event.final_url,
                    eta=None,
                )

            case Failed():
                return self._update(
                    record,
                    status=JobStatus.failed,
                    error_message=event.message,
                    error_kind=event.kind,
                    eta=None,
                )

            case CancelRequested():
                return self._update(record, status=JobStatus.cancelled, eta=None)

            case _:
                raise IllegalTransitionError(record.job_id, status.value, event.name)

    @staticmethod
    def _update(record: JobRecord, **changes: object) -> JobRecord:
        return record.model_copy(update={**changes, "updated_at": utcnow()})
