"""FastAPI application factory.

Run with:
    uvicorn --factory cl_image_jobs.app:create_app
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .adapters.registry import AdapterFactory, AdapterRegistry
from .api import create_router
from .common.file_storage_impl import LocalFileStorage
from .common.job_store import JobStore
from .common.modes import ModeCatalog
from .config import Settings
from .logging_config import configure_logging
from .manager import JobManager, PollingPolicy


async def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    """Malformed request bodies are validation failures like any other: 400."""
    _ = request
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


def create_app(
    settings: Settings | None = None,
    factories: Mapping[str, AdapterFactory] | None = None,
) -> FastAPI:
    """Wire store, storage, registry and manager into a FastAPI app.

    Args:
        settings: runtime configuration; read from the environment if omitted.
        factories: adapter factories overriding the built-ins and entry points.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)

    storage = LocalFileStorage(settings.storage_dir, public_base_url=settings.public_base_url)
    registry = AdapterRegistry(settings, storage, factories)
    modes = ModeCatalog.load_default()
    policy = PollingPolicy(
        interval=settings.poll_interval,
        max_backoff=settings.max_backoff,
        max_consecutive_errors=settings.max_consecutive_errors,
        max_duration=settings.max_job_duration,
    )
    manager = JobManager(JobStore(), registry, storage=storage, policy=policy, modes=modes)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _ = app
        logger.info(
            f"Job service ready: providers={registry.providers} default='{settings.provider}' "
            + f"storage={storage.base_dir}"
        )
        yield
        await manager.shutdown()

    app = FastAPI(title="cl_image_jobs", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(
        create_router(manager, registry, storage, modes, max_upload_bytes=settings.max_upload_bytes)
    )

    app.state.settings = settings
    app.state.manager = manager
    app.state.registry = registry
    app.state.storage = storage
    return app
