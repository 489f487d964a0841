"""JobManager - caller-facing controller for generation and editing jobs.

Polling stands in for push updates: the system has no push transport, so
every active job owns one asyncio task that reads the adapter's status on a
fixed schedule and feeds each snapshot to the job's ProgressivePreview and
to the JobStore. The schedule and its bounds are fixed constants:

    POLL_INTERVAL_SECONDS     1.0   delay between successful polls
    BACKOFF_FACTOR            2.0   delay multiplier per consecutive adapter error
    MAX_BACKOFF_SECONDS      16.0   cap on the error backoff delay
    MAX_CONSECUTIVE_ERRORS      5   transient errors in a row before escalation
    MAX_JOB_DURATION_SECONDS  600   wall-clock bound without a terminal status

Escalation (too many adapter errors, a fatal adapter error, or the duration
bound) turns the job into `failed` with `error_kind` "adapter" or "timeout".
Polling tasks never raise; callers observe outcomes on the job record.
"""

import asyncio
from dataclasses import dataclass, field
from typing import ClassVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .adapters.base import Capability, ModelAdapter
from .adapters.registry import AdapterRegistry
from .common.errors import (
    AdapterError,
    IllegalTransitionError,
    JobTimeoutError,
    NotFoundError,
    ValidationError,
)
from .common.file_storage import FileStorage
from .common.job_events import (
    Accepted,
    CancelRequested,
    Completed,
    Failed,
    JobEvent,
    ProgressUpdate,
)
from .common.job_store import JobStore
from .common.modes import ModeCatalog
from .common.progressive_preview import PreviewState, ProgressivePreview
from .common.schema_job import (
    EditParams,
    GenerationParams,
    apply_mode_prompt,
    validate_edit_params,
    validate_generation_params,
)
from .common.schema_job_record import ErrorKind, JobHandle, JobKind, JobRecord, JobSnapshot, JobStatus

POLL_INTERVAL_SECONDS = 1.0
BACKOFF_FACTOR = 2.0
MAX_BACKOFF_SECONDS = 16.0
MAX_CONSECUTIVE_ERRORS = 5
MAX_JOB_DURATION_SECONDS = 600.0


class PollingPolicy(BaseModel):
    interval: float = Field(POLL_INTERVAL_SECONDS, gt=0)
    backoff_factor: float = Field(BACKOFF_FACTOR, ge=1)
    max_backoff: float = Field(MAX_BACKOFF_SECONDS, gt=0)
    max_consecutive_errors: int = Field(MAX_CONSECUTIVE_ERRORS, ge=1)
    max_duration: float = Field(MAX_JOB_DURATION_SECONDS, gt=0)

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    def error_delay(self, consecutive_errors: int) -> float:
        """Backoff delay after the n-th consecutive adapter error (n >= 1)."""
        delay = self.interval * self.backoff_factor ** max(0, consecutive_errors - 1)
        return min(self.max_backoff, delay)


@dataclass(eq=False)
class _TrackedJob:
    job_id: str
    handle: JobHandle
    adapter: ModelAdapter
    preview: ProgressivePreview = field(default_factory=ProgressivePreview)
    task: asyncio.Task[None] | None = None
    cancel_requested: bool = False
    finished: bool = False
    released: bool = False


class JobManager:
    """Submits jobs through the AdapterRegistry and drives one polling loop per job.

    `active_jobs` and `completed_jobs` are single-writer lists owned by the
    manager. They are replaced, never mutated in place, so a reader holding a
    previous value is never disturbed.
    """

    def __init__(
        self,
        store: JobStore,
        registry: AdapterRegistry,
        storage: FileStorage | None = None,
        policy: PollingPolicy | None = None,
        modes: ModeCatalog | None = None,
    ):
        self.store: JobStore = store
        self.registry: AdapterRegistry = registry
        self.storage: FileStorage | None = storage
        self.policy: PollingPolicy = policy or PollingPolicy()
        self.modes: ModeCatalog = modes or ModeCatalog.load_default()

        self._tracked: dict[str, _TrackedJob] = {}
        self._active: list[str] = []
        self._completed: list[str] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def active_jobs(self) -> tuple[JobRecord, ...]:
        return self._records(self._active)

    @property
    def completed_jobs(self) -> tuple[JobRecord, ...]:
        return self._records(self._completed)

    @property
    def is_generating(self) -> bool:
        return bool(self._active)

    def get_job(self, job_id: str) -> JobRecord:
        return self.store.get(job_id)

    def get_preview(self, job_id: str) -> PreviewState:
        tracked = self._tracked.get(job_id)
        if tracked is not None:
            return tracked.preview.state

        record = self.store.get(job_id)
        return PreviewState(
            current_image=record.final_url or (record.preview_urls[-1] if record.preview_urls else None),
            preview_images=record.preview_urls,
            progress=record.progress,
            eta=record.eta,
            is_loading=not record.is_terminal,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def start_generation(self, params: GenerationParams) -> JobRecord:
        """Validate, submit and start polling a generation job.

        Raises:
            ValidationError: before any job record exists.
            AdapterError: the provider rejected the submission.
        """
        params = apply_mode_prompt(validate_generation_params(params, self.modes), self.modes)
        adapter = self._adapter_for(params.provider, "generate")
        handle = await adapter.generate(params)
        return self._enroll(adapter, handle, "generate")

    async def start_editing(self, params: EditParams) -> JobRecord:
        params = apply_mode_prompt(validate_edit_params(params, self.modes), self.modes)
        adapter = self._adapter_for(params.provider, "edit")
        handle = await adapter.edit(params)
        return self._enroll(adapter, handle, "edit")

    # ------------------------------------------------------------------
    # Cancellation & history
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: str) -> JobRecord:
        """Cancel a job. Idempotent; a no-op for terminal jobs.

        Raises:
            NotFoundError: unknown job id.
        """
        record = self.store.get(job_id)
        tracked = self._tracked.get(job_id)
        if record.is_terminal or tracked is None or tracked.cancel_requested:
            return record

        tracked.cancel_requested = True
        try:
            acknowledged = await tracked.adapter.cancel(tracked.handle)
            logger.debug(f"Job {job_id}: adapter cancel acknowledged={acknowledged}")
        except AdapterError as e:
            logger.warning(f"Job {job_id}: adapter cancel failed, cancelling locally: {e}")
        finally:
            # The local cancel completes even when the adapter call raised.
            try:
                record = self.store.transition(job_id, CancelRequested())
            except IllegalTransitionError as e:
                # A terminal poll result landed first; it stands.
                logger.info(f"Job {job_id}: cancel arrived after terminal status: {e}")
                record = self.store.get(job_id)
            await self._stop_polling(tracked)
            self._finish(tracked)
        return record

    def clear_completed_jobs(self, purge: bool = False) -> int:
        """Empty the completed list and release job-scoped files.

        Args:
            purge: also remove the records from the JobStore.

        Returns:
            Number of jobs cleared.
        """
        cleared, self._completed = self._completed, []
        for job_id in cleared:
            tracked = self._tracked.pop(job_id, None)
            if tracked is not None:
                self._release(tracked)
            if purge:
                _ = self.store.remove(job_id)
        if cleared:
            logger.info(f"Cleared {len(cleared)} completed job(s){' and purged records' if purge else ''}")
        return len(cleared)

    async def wait_for(self, job_id: str, timeout: float | None = None) -> JobRecord:
        """Wait until the job's polling loop has exited and return its record.

        A concurrent cancel_job ends the wait normally with the cancelled record.

        Raises:
            TimeoutError: the loop is still running after `timeout` seconds.
        """
        tracked = self._tracked.get(job_id)
        if tracked is None:
            return self.store.get(job_id)
        task = tracked.task
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise TimeoutError(f"Job {job_id} still running after {timeout}s")
        return self.store.get(job_id)

    async def shutdown(self) -> None:
        """Stop every polling loop, release files, empty the store, close adapters."""
        tracked_jobs = list(self._tracked.values())
        for tracked in tracked_jobs:
            tracked.cancel_requested = True
            await self._stop_polling(tracked)
            self._release(tracked)
        self._tracked.clear()
        self._active = []
        self._completed = []
        self.store.clear()
        await self.registry.aclose()
        logger.info(f"Job manager shut down ({len(tracked_jobs)} tracked job(s) released)")

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def _poll_loop(self, tracked: _TrackedJob) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        consecutive_errors = 0
        try:
            while not tracked.cancel_requested:
                elapsed = loop.time() - started
                if elapsed > self.policy.max_duration:
                    error = JobTimeoutError(
                        f"No terminal status after {elapsed:.1f}s "
                        + f"(limit {self.policy.max_duration:.1f}s)"
                    )
                    self._escalate(tracked, error.message, "timeout")
                    return

                try:
                    snapshot = await tracked.adapter.poll_status(tracked.handle)
                except AdapterError as e:
                    consecutive_errors += 1
                    logger.warning(
                        f"Job {tracked.job_id}: poll failed "
                        + f"({consecutive_errors}/{self.policy.max_consecutive_errors}): {e}"
                    )
                    if not e.transient or consecutive_errors >= self.policy.max_consecutive_errors:
                        self._escalate(tracked, str(e), "adapter")
                        return
                    await asyncio.sleep(self.policy.error_delay(consecutive_errors))
                    continue

                consecutive_errors = 0
                if tracked.cancel_requested:
                    return
                if self._apply_snapshot(tracked, snapshot).is_terminal:
                    return
                await asyncio.sleep(self.policy.interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Job {tracked.job_id}: polling loop crashed")
            self._escalate(tracked, f"Internal polling error: {e}", "adapter")
        finally:
            if not tracked.cancel_requested:
                self._finish(tracked)

    def _apply_snapshot(self, tracked: _TrackedJob, snapshot: JobSnapshot) -> JobRecord:
        _ = tracked.preview.merge(snapshot)
        record = self.store.get(tracked.job_id)
        for event in self._events_for(record, snapshot):
            try:
                record = self.store.transition(tracked.job_id, event)
            except IllegalTransitionError as e:
                logger.warning(f"Job {tracked.job_id}: discarded {event.name}: {e}")
        return record

    @staticmethod
    def _events_for(record: JobRecord, snapshot: JobSnapshot) -> list[JobEvent]:
        events: list[JobEvent] = []
        accept = record.status == JobStatus.queued
        previews = tuple(snapshot.preview_urls)

        match snapshot.status:
            case JobStatus.queued:
                pass
            case JobStatus.processing:
                if accept:
                    events.append(Accepted())
                events.append(
                    ProgressUpdate(progress=snapshot.progress, preview_urls=previews, eta=snapshot.eta)
                )
            case JobStatus.succeeded:
                if accept:
                    events.append(Accepted())
                if snapshot.final_url:
                    events.append(Completed(final_url=snapshot.final_url, preview_urls=previews))
                else:
                    events.append(Failed(message="Provider reported success without an image"))
            case JobStatus.failed:
                events.append(Failed(message=snapshot.error_message or "Generation failed"))
            case JobStatus.cancelled:
                events.append(CancelRequested())
        return events

    def _escalate(self, tracked: _TrackedJob, message: str, kind: ErrorKind) -> None:
        logger.error(f"Job {tracked.job_id}: escalating to failed ({kind}): {message}")
        try:
            _ = self.store.transition(tracked.job_id, Failed(message=message, kind=kind))
        except (IllegalTransitionError, NotFoundError) as e:
            logger.info(f"Job {tracked.job_id}: escalation skipped: {e}")
        _ = tracked.preview.finish()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _records(self, job_ids: list[str]) -> tuple[JobRecord, ...]:
        records: list[JobRecord] = []
        for job_id in job_ids:
            try:
                records.append(self.store.get(job_id))
            except NotFoundError:
                continue
        return tuple(records)

    def _adapter_for(self, provider: str | None, capability: Capability) -> ModelAdapter:
        adapter = self.registry.resolve(provider)
        if capability not in adapter.capabilities:
            raise ValidationError(
                f"Model '{adapter.model_id}' does not support {capability}", field="provider"
            )
        return adapter

    def _enroll(self, adapter: ModelAdapter, handle: JobHandle, kind: JobKind) -> JobRecord:
        record = self.store.create(handle.model_id, kind)
        tracked = _TrackedJob(job_id=record.job_id, handle=handle, adapter=adapter)
        self._tracked[record.job_id] = tracked
        self._active = [*self._active, record.job_id]
        tracked.task = asyncio.create_task(self._poll_loop(tracked), name=f"poll-{record.job_id}")
        logger.info(f"Job {record.job_id} ({kind}) started on '{handle.model_id}' ref={handle.reference}")
        return record

    async def _stop_polling(self, tracked: _TrackedJob) -> None:
        task = tracked.task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        _ = task.cancel()
        _ = await asyncio.gather(task, return_exceptions=True)

    def _finish(self, tracked: _TrackedJob) -> None:
        """Move a job from active to completed; release files of cancelled jobs."""
        if tracked.finished:
            return
        tracked.finished = True
        tracked.task = None
        _ = tracked.preview.finish()

        self._active = [job_id for job_id in self._active if job_id != tracked.job_id]
        self._completed = [*self._completed, tracked.job_id]

        try:
            status = self.store.get(tracked.job_id).status
        except NotFoundError:
            return
        if status == JobStatus.cancelled:
            self._release(tracked)

    def _release(self, tracked: _TrackedJob) -> None:
        if tracked.released:
            return
        tracked.released = True
        tracked.adapter.forget(tracked.handle)
        if self.storage is None:
            return
        reference = tracked.handle.reference
        try:
            if self.storage.has_scope(reference) and self.storage.release(reference):
                logger.debug(f"Job {tracked.job_id}: released files of {reference}")
        except ValueError:
            # Provider references that are not valid scope names never own local files.
            return
