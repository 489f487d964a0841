"""Progressive preview assembly for a single job.

Folds the JobSnapshots observed for one job into the caller-visible
projection. Merging is idempotent: re-sent or duplicate snapshots never
re-append a preview and never move `current_image` back to a
lower-fidelity reference.
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict

from .job_store import merge_preview_urls
from .schema_job_record import JobSnapshot, JobStatus


class PreviewState(BaseModel):
    current_image: str | None = None
    preview_images: tuple[str, ...] = ()
    progress: int = 0
    eta: float | None = None
    is_loading: bool = True

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class ProgressivePreview:
    """Per-job assembler; apply snapshots in receipt order."""

    def __init__(self) -> None:
        self._previews: tuple[str, ...] = ()
        self._final_url: str | None = None
        self._state: PreviewState = PreviewState()

    @property
    def state(self) -> PreviewState:
        return self._state

    def merge(self, snapshot: JobSnapshot) -> PreviewState:
        self._previews = merge_preview_urls(self._previews, snapshot.preview_urls)
        if snapshot.final_url and self._final_url is None:
            self._final_url = snapshot.final_url

        # Fidelity is ranked by position: the final image beats every
        # preview, later previews beat earlier ones.
        current = self._final_url or (self._previews[-1] if self._previews else None)

        # A terminal state sticks even if an older in-flight snapshot arrives late.
        is_loading = self._state.is_loading and snapshot.status in (
            JobStatus.queued,
            JobStatus.processing,
        )

        self._state = PreviewState(
            current_image=current,
            preview_images=self._previews,
            progress=max(self._state.progress, snapshot.progress),
            eta=snapshot.eta if is_loading else None,
            is_loading=is_loading,
        )
        return self._state

    def finish(self) -> PreviewState:
        """Mark the projection as no longer loading (cancel, timeout, escalation)."""
        self._state = self._state.model_copy(update={"is_loading": False, "eta": None})
        return self._state
