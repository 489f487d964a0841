"""AdapterRegistry - resolves provider names to ModelAdapter instances."""

from collections.abc import Callable, Mapping
from importlib.metadata import entry_points
from typing import cast

from loguru import logger
from pydantic import BaseModel

from ..common.file_storage import FileStorage
from ..config import Settings
from .base import Capability, ModelAdapter
from .fal import FalAdapter
from .horde import HordeAdapter
from .local_stub import LocalStubAdapter

FALLBACK_PROVIDER = "local"

# A factory returns None when its provider has no credentials configured.
AdapterFactory = Callable[[Settings, FileStorage], ModelAdapter | None]


class ModelInfo(BaseModel):
    model_id: str
    capabilities: list[Capability]


def _local_factory(settings: Settings, storage: FileStorage) -> ModelAdapter:
    return LocalStubAdapter(
        storage,
        steps=settings.local_steps,
        step_seconds=settings.local_step_seconds,
        preview_size=settings.local_preview_size,
    )


def _fal_factory(settings: Settings, storage: FileStorage) -> ModelAdapter | None:
    _ = storage
    if not settings.fal_api_key:
        return None
    return FalAdapter(
        settings.fal_api_key,
        model=settings.fal_model,
        edit_model=settings.fal_edit_model,
        endpoint=settings.fal_endpoint,
        timeout=settings.http_timeout,
    )


def _horde_factory(settings: Settings, storage: FileStorage) -> ModelAdapter | None:
    _ = storage
    if not settings.horde_api_key:
        return None
    return HordeAdapter(
        settings.horde_api_key,
        endpoint=settings.horde_endpoint,
        model=settings.horde_model,
        timeout=settings.http_timeout,
    )


BUILTIN_FACTORIES: dict[str, AdapterFactory] = {
    "local": _local_factory,
    "fal": _fal_factory,
    "ai_horde": _horde_factory,
}


def get_adapter_factories() -> dict[str, AdapterFactory]:
    """Built-in factories plus any registered under the entry point group.

    Discovers extra providers from
    [project.entry-points."cl_image_jobs.adapters"] of installed packages.

    Raises:
        RuntimeError: If an entry point fails to load (missing dependency, etc.)
    """
    factories = dict(BUILTIN_FACTORIES)
    for ep in entry_points(group="cl_image_jobs.adapters"):
        try:
            factories[ep.name] = cast(AdapterFactory, ep.load())
        except Exception as e:
            raise RuntimeError(f"Failed to load adapter '{ep.name}': {e}") from e
    return factories


class AdapterRegistry:
    """Holds one adapter instance per configured provider.

    The local adapter is always registered, so resolving never fails: a
    provider that is unknown or lacks credentials resolves to it.
    """

    def __init__(
        self,
        settings: Settings,
        storage: FileStorage,
        factories: Mapping[str, AdapterFactory] | None = None,
    ):
        self.settings: Settings = settings
        self._adapters: dict[str, ModelAdapter] = {}

        available = dict(factories) if factories is not None else get_adapter_factories()
        available.setdefault(FALLBACK_PROVIDER, _local_factory)

        for name, factory in available.items():
            adapter = factory(settings, storage)
            if adapter is None:
                logger.info(f"Provider '{name}' not configured; skipping")
                continue
            self._adapters[name] = adapter

        if FALLBACK_PROVIDER not in self._adapters:
            raise RuntimeError("The local fallback adapter could not be created")

    @property
    def providers(self) -> list[str]:
        return list(self._adapters)

    def resolve(self, provider: str | None = None) -> ModelAdapter:
        name = provider or self.settings.provider
        adapter = self._adapters.get(name)
        if adapter is None:
            logger.warning(f"Provider '{name}' unavailable; falling back to '{FALLBACK_PROVIDER}'")
            return self._adapters[FALLBACK_PROVIDER]
        return adapter

    def models(self) -> list[ModelInfo]:
        return [
            ModelInfo(model_id=adapter.model_id, capabilities=list(adapter.capabilities))
            for adapter in self._adapters.values()
        ]

    async def aclose(self) -> None:
        for name, adapter in self._adapters.items():
            try:
                await adapter.aclose()
            except Exception as e:
                logger.warning(f"Error closing adapter '{name}': {e}")
