"""Runtime configuration.

Values come from the environment (prefix `CL_IMAGE_JOBS_`) or a `.env`
file. Provider credentials are optional: a provider without credentials is
never an error, the AdapterRegistry falls back to the local adapter instead.
"""

from pathlib import Path
from typing import ClassVar

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Provider selection
    provider: str = Field("local", description="Default provider: local, fal or ai_horde")

    # Storage
    storage_dir: Path = Path.home() / ".cache" / "cl_image_jobs" / "files"
    public_base_url: str = "/files"
    max_upload_bytes: int = 10 * 1024 * 1024

    # Local deterministic adapter
    local_steps: int = Field(5, ge=1, le=20)
    local_step_seconds: float = Field(0.8, gt=0)
    local_preview_size: int = Field(256, ge=32, le=1024)

    # fal.ai
    fal_api_key: str | None = None
    fal_model: str = "fal-ai/flux/dev"
    fal_edit_model: str = "fal-ai/flux/dev/image-to-image"
    fal_endpoint: str = "https://queue.fal.run"

    # AI Horde
    horde_api_key: str | None = None
    horde_endpoint: str = "https://aihorde.net/api/v2"
    horde_model: str = "stable_diffusion"

    http_timeout: float = 30.0

    # Polling (see cl_image_jobs.manager for the meaning of each bound)
    poll_interval: float = Field(1.0, gt=0)
    max_backoff: float = Field(16.0, gt=0)
    max_consecutive_errors: int = Field(5, ge=1)
    max_job_duration: float = Field(600.0, gt=0)

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="CL_IMAGE_JOBS_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )
