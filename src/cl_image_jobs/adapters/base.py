"""ModelAdapter Protocol - uniform capability surface over a generation backend."""

from typing import Literal, Protocol, runtime_checkable

from ..common.schema_job import EditParams, GenerationParams
from ..common.schema_job_record import JobHandle, JobSnapshot

Capability = Literal["generate", "edit"]


@runtime_checkable
class ModelAdapter(Protocol):
    """Protocol every provider variant implements.

    Implementations must normalize their provider's native response shape
    into JobSnapshot, and must distinguish a transient provider failure
    (raise AdapterError) from a job the provider reports as failed (return a
    snapshot with status=failed).
    """

    model_id: str
    capabilities: tuple[Capability, ...]

    async def generate(self, params: GenerationParams) -> JobHandle:
        """Start backend work and return immediately.

        Raises:
            ValidationError: params malformed for this adapter.
            AdapterError: provider rejected the request synchronously.
        """
        ...

    async def edit(self, params: EditParams) -> JobHandle:
        """Start an edit (source image + mask) and return immediately."""
        ...

    async def poll_status(self, handle: JobHandle) -> JobSnapshot:
        """Idempotent, side-effect-free status read.

        Raises:
            AdapterError: transient provider failure.
        """
        ...

    async def cancel(self, handle: JobHandle) -> bool:
        """Best-effort cancel; a no-op (not an error) for terminal jobs.

        Returns:
            True if the provider acknowledged the cancel.
        """
        ...

    def forget(self, handle: JobHandle) -> None:
        """Drop adapter-side state kept for `handle`; it will not be polled again."""
        ...

    async def aclose(self) -> None:
        """Release adapter-owned resources (HTTP clients)."""
        ...
