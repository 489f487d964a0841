"""HTTP route factory for the job orchestration API."""

import asyncio
from io import BytesIO
from typing import Annotated, ClassVar
from uuid import uuid4

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from loguru import logger
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict

from .adapters.registry import AdapterRegistry, ModelInfo
from .common.errors import AdapterError, NotFoundError, ValidationError
from .common.file_storage import FileStorage, StoredFile
from .common.modes import Mode, ModeCatalog
from .common.progressive_preview import PreviewState
from .common.schema_job import EditParams, GenerationParams
from .common.schema_job_record import JobCreatedResponse, JobRecord
from .manager import JobManager

# Pillow format name -> stored file extension
UPLOAD_FORMATS = {"PNG": "png", "JPEG": "jpg", "WEBP": "webp"}


class JobListResponse(BaseModel):
    active: list[JobRecord]
    completed: list[JobRecord]


class ClearedResponse(BaseModel):
    cleared: int
    purged: bool

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


def _detect_image_format(data: bytes) -> str:
    """Return the Pillow format of `data`.

    Raises:
        ValidationError: not a decodable png/jpeg/webp image.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format or ""
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError(f"Uploaded file is not a valid image: {e}", field="file") from e
    if image_format not in UPLOAD_FORMATS:
        raise ValidationError(
            f"Unsupported image format {image_format or 'unknown'}; use png, jpeg or webp",
            field="file",
        )
    return image_format


def create_router(
    manager: JobManager,
    registry: AdapterRegistry,
    storage: FileStorage,
    modes: ModeCatalog,
    max_upload_bytes: int = 10 * 1024 * 1024,
) -> APIRouter:
    """Create router with injected dependencies."""
    router = APIRouter()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @router.post("/generate", response_model=JobCreatedResponse)
    async def generate(params: GenerationParams) -> JobCreatedResponse:
        try:
            record = await manager.start_generation(params)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except AdapterError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return JobCreatedResponse(job_id=record.job_id, status=record.status, model_id=record.model_id)

    @router.post("/edit", response_model=JobCreatedResponse)
    async def edit(params: EditParams) -> JobCreatedResponse:
        try:
            record = await manager.start_editing(params)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except AdapterError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return JobCreatedResponse(job_id=record.job_id, status=record.status, model_id=record.model_id)

    # ------------------------------------------------------------------
    # Job inspection & cancellation
    # ------------------------------------------------------------------

    @router.get("/job/{job_id}", response_model=JobRecord)
    async def get_job(job_id: str) -> JobRecord:
        try:
            return manager.get_job(job_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @router.delete("/job/{job_id}", response_model=JobRecord)
    async def cancel_job(job_id: str) -> JobRecord:
        try:
            return await manager.cancel_job(job_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @router.get("/job/{job_id}/preview", response_model=PreviewState)
    async def get_preview(job_id: str) -> PreviewState:
        try:
            return manager.get_preview(job_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @router.get("/jobs", response_model=JobListResponse)
    async def list_jobs() -> JobListResponse:
        return JobListResponse(active=list(manager.active_jobs), completed=list(manager.completed_jobs))

    @router.delete("/jobs/completed", response_model=ClearedResponse)
    async def clear_completed(
        purge: Annotated[bool, Query(description="Also drop the job records")] = False,
    ) -> ClearedResponse:
        return ClearedResponse(cleared=manager.clear_completed_jobs(purge=purge), purged=purge)

    # ------------------------------------------------------------------
    # Catalogs
    # ------------------------------------------------------------------

    @router.get("/models", response_model=list[ModelInfo])
    async def list_models() -> list[ModelInfo]:
        return registry.models()

    @router.get("/modes", response_model=list[Mode])
    async def list_modes() -> list[Mode]:
        return list(modes)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @router.post("/uploads", response_model=StoredFile)
    async def upload_image(
        file: Annotated[UploadFile, File(description="Source image or mask (png, jpeg, webp)")],
    ) -> StoredFile:
        data = await file.read(max_upload_bytes + 1)
        if len(data) > max_upload_bytes:
            raise HTTPException(
                status_code=413, detail=f"Upload exceeds {max_upload_bytes} bytes"
            )
        try:
            image_format = await asyncio.to_thread(_detect_image_format, data)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        scope = f"upload-{uuid4().hex}"
        stored = await storage.save(scope, f"source.{UPLOAD_FORMATS[image_format]}", data)
        logger.info(f"Stored upload {file.filename!r} as {stored.url} ({stored.size} bytes)")
        return stored

    @router.get("/files/{scope}/{relative_path:path}")
    async def get_file(scope: str, relative_path: str) -> FileResponse:
        try:
            path = storage.resolve_path(scope, relative_path)
        except ValueError as e:
            raise HTTPException(status_code=404, detail="File not found") from e
        if not path.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(path)

    _ = (generate, edit, get_job, cancel_job, get_preview, list_jobs, clear_completed)
    _ = (list_models, list_modes, upload_image, get_file)
    return router
