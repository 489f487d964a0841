"""Deterministic local adapter.

Used whenever no provider credentials are configured. Each job renders a
fixed number of synthetic images with Pillow at submission time, then reveals
them one step at a time as the clock advances: progress moves in equal steps
from 0 to 100, intermediate steps expose increasingly sharp previews and the
last step exposes the final image. The same request always produces the same
pixels.
"""

import asyncio
import hashlib
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing_extensions import override
from uuid import uuid4

from loguru import logger
from PIL import Image, ImageDraw, ImageFilter

from ..common.errors import AdapterError, ValidationError
from ..common.file_storage import FileStorage
from ..common.schema_job import EditParams, GenerationParams
from ..common.schema_job_record import JobHandle, JobSnapshot, JobStatus
from .base import Capability, ModelAdapter


@dataclass
class _StubJob:
    started_at: float
    preview_urls: list[str]
    final_url: str
    cancelled_progress: int | None = None


class LocalStubAdapter(ModelAdapter):
    """Always succeeds after `steps` synthetic progress steps."""

    def __init__(
        self,
        storage: FileStorage,
        *,
        steps: int = 5,
        step_seconds: float = 0.8,
        preview_size: int = 256,
        clock: Callable[[], float] = time.monotonic,
        model_id: str = "local",
    ):
        if steps < 1:
            raise ValueError("steps must be >= 1")
        self.model_id: str = model_id
        self.capabilities: tuple[Capability, ...] = ("generate", "edit")
        self.storage: FileStorage = storage
        self.steps: int = steps
        self.step_seconds: float = step_seconds
        self.preview_size: int = preview_size
        self._clock: Callable[[], float] = clock
        self._jobs: dict[str, _StubJob] = {}

    @override
    async def generate(self, params: GenerationParams) -> JobHandle:
        return await self._submit(params, seed_text=f"generate|{params.prompt}|{params.mode}")

    @override
    async def edit(self, params: EditParams) -> JobHandle:
        if not params.image_url or not params.mask_url:
            raise ValidationError("Local adapter needs image_url and mask_url to edit")
        return await self._submit(
            params,
            seed_text=f"edit|{params.prompt}|{params.mode}|{params.image_url}|{params.mask_url}",
            masked=True,
        )

    @override
    async def poll_status(self, handle: JobHandle) -> JobSnapshot:
        job = self._jobs.get(handle.reference)
        if job is None:
            raise AdapterError(
                f"Unknown local job: {handle.reference}", transient=False, model_id=self.model_id
            )

        if job.cancelled_progress is not None:
            return JobSnapshot(status=JobStatus.cancelled, progress=job.cancelled_progress)

        revealed = self._revealed_steps(job)
        progress = revealed * 100 // self.steps
        if revealed >= self.steps:
            return JobSnapshot(
                status=JobStatus.succeeded,
                progress=100,
                preview_urls=list(job.preview_urls),
                final_url=job.final_url,
            )

        elapsed = self._clock() - job.started_at
        return JobSnapshot(
            status=JobStatus.processing,
            progress=progress,
            preview_urls=job.preview_urls[:revealed],
            eta=round(max(0.0, self.steps * self.step_seconds - elapsed), 2),
        )

    @override
    async def cancel(self, handle: JobHandle) -> bool:
        job = self._jobs.get(handle.reference)
        if job is None or job.cancelled_progress is not None:
            return False
        revealed = self._revealed_steps(job)
        if revealed >= self.steps:
            return False
        job.cancelled_progress = revealed * 100 // self.steps
        logger.debug(f"Local job {handle.reference} cancelled at {job.cancelled_progress}%")
        return True

    @override
    def forget(self, handle: JobHandle) -> None:
        _ = self._jobs.pop(handle.reference, None)

    @override
    async def aclose(self) -> None:
        self._jobs.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _revealed_steps(self, job: _StubJob) -> int:
        elapsed = self._clock() - job.started_at
        return min(self.steps, int(elapsed // self.step_seconds))

    async def _submit(self, params: GenerationParams, *, seed_text: str, masked: bool = False) -> JobHandle:
        reference = uuid4().hex
        width, height = self._preview_dimensions(params)
        seed = int.from_bytes(hashlib.sha256(seed_text.encode("utf-8")).digest()[:8], "big")

        urls = await asyncio.to_thread(self._render, reference, seed, width, height, masked)

        self._jobs[reference] = _StubJob(
            started_at=self._clock(),
            preview_urls=urls[:-1],
            final_url=urls[-1],
        )
        logger.debug(f"Local job {reference} rendered {len(urls)} images ({width}x{height})")
        return JobHandle(model_id=self.model_id, reference=reference)

    def _preview_dimensions(self, params: GenerationParams) -> tuple[int, int]:
        try:
            width, height = params.dimensions()
        except ValidationError:
            width, height = 1, 1
        scale = self.preview_size / max(width, height)
        return max(16, round(width * scale)), max(16, round(height * scale))

    def _render(self, reference: str, seed: int, width: int, height: int, masked: bool) -> list[str]:
        """Render the final image and one degraded preview per intermediate step."""
        rng = random.Random(seed)
        final = Image.new("RGB", (width, height))
        draw = ImageDraw.Draw(final)

        top = tuple(rng.randrange(256) for _ in range(3))
        bottom = tuple(rng.randrange(256) for _ in range(3))
        for y in range(height):
            t = y / max(1, height - 1)
            color = tuple(round(a + (b - a) * t) for a, b in zip(top, bottom))
            draw.line([(0, y), (width, y)], fill=color)

        for _ in range(rng.randint(4, 9)):
            x0, y0 = rng.randrange(width), rng.randrange(height)
            radius = rng.randint(max(4, width // 16), max(8, width // 4))
            fill = tuple(rng.randrange(256) for _ in range(3))
            draw.ellipse([x0 - radius, y0 - radius, x0 + radius, y0 + radius], fill=fill)

        if masked:
            draw.rectangle(
                [width // 4, height // 4, 3 * width // 4, 3 * height // 4],
                outline=(255, 255, 255),
                width=max(1, width // 64),
            )

        urls: list[str] = []
        for step in range(1, self.steps):
            fidelity = step / self.steps
            low = final.resize(
                (max(1, round(width * fidelity)), max(1, round(height * fidelity))),
                Image.Resampling.BILINEAR,
            ).resize((width, height), Image.Resampling.NEAREST)
            preview = low.filter(ImageFilter.GaussianBlur(radius=(self.steps - step) * 1.5))
            urls.append(self._save(preview, reference, f"previews/step_{step:02d}.png"))

        urls.append(self._save(final, reference, "final.png"))
        return urls

    def _save(self, image: Image.Image, reference: str, relative_path: str) -> str:
        path = self.storage.allocate_path(reference, relative_path)
        image.save(path, format="PNG")
        return self.storage.public_url(reference, relative_path)
