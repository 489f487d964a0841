"""Test configuration and fixtures for cl_image_jobs.

This module provides:
- A manual clock that drives the local adapter step by step
- Function-scoped fixtures (temp storage, settings, adapters, registry, manager)
- Async helpers for waiting on polling loops
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio

from cl_image_jobs.adapters.base import ModelAdapter
from cl_image_jobs.adapters.local_stub import LocalStubAdapter
from cl_image_jobs.adapters.registry import AdapterFactory, AdapterRegistry
from cl_image_jobs.common.file_storage import FileStorage
from cl_image_jobs.common.file_storage_impl import LocalFileStorage
from cl_image_jobs.common.job_store import JobStore
from cl_image_jobs.common.modes import ModeCatalog
from cl_image_jobs.config import Settings
from cl_image_jobs.manager import JobManager, PollingPolicy

WaitUntil = Callable[..., Awaitable[None]]


# ============================================================================
# Helpers
# ============================================================================


class ManualClock:
    """Monotonic clock that only moves when the test says so."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now: float = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"Condition not met within {timeout}s")
        await asyncio.sleep(0.005)


def url_to_path(storage: LocalFileStorage, url: str) -> Path:
    """Map a `/files/<scope>/<path>` reference back to the stored file."""
    scope, relative_path = url.removeprefix("/files/").split("/", 1)
    return storage.resolve_path(scope, relative_path)


# ============================================================================
# Function-scoped fixtures
# ============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "files")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with no provider credentials and a fast local adapter."""
    return Settings(
        _env_file=None,  # pyright: ignore[reportCallIssue]
        provider="local",
        storage_dir=tmp_path / "files",
        local_steps=3,
        local_step_seconds=0.02,
        local_preview_size=32,
        fal_api_key=None,
        horde_api_key=None,
        poll_interval=0.01,
        max_backoff=0.02,
        max_consecutive_errors=3,
        max_job_duration=10.0,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def local_adapter(storage: LocalFileStorage, clock: ManualClock) -> LocalStubAdapter:
    """Five-step local adapter; each step takes one second of `clock` time."""
    return LocalStubAdapter(storage, steps=5, step_seconds=1.0, preview_size=32, clock=clock)


@pytest.fixture
def policy() -> PollingPolicy:
    return PollingPolicy(interval=0.01, max_backoff=0.02, max_consecutive_errors=3, max_duration=5.0)


@pytest.fixture
def wait_until() -> WaitUntil:
    return _wait_until


@pytest.fixture
def resolve_url(storage: LocalFileStorage) -> Callable[[str], Path]:
    return lambda url: url_to_path(storage, url)


@pytest.fixture
def registry_factory(
    settings: Settings, storage: LocalFileStorage, local_adapter: LocalStubAdapter
) -> Callable[..., AdapterRegistry]:
    """Build a registry over explicit adapter instances (local is always present)."""

    def build(**adapters: ModelAdapter) -> AdapterRegistry:
        def factory_for(adapter: ModelAdapter) -> AdapterFactory:
            def factory(_settings: Settings, _storage: FileStorage) -> ModelAdapter:
                return adapter

            return factory

        factories = {"local": factory_for(local_adapter)}
        factories.update({name: factory_for(adapter) for name, adapter in adapters.items()})
        return AdapterRegistry(settings, storage, factories)

    return build


@pytest_asyncio.fixture
async def manager_factory(
    registry_factory: Callable[..., AdapterRegistry],
    storage: LocalFileStorage,
    policy: PollingPolicy,
) -> AsyncIterator[Callable[..., JobManager]]:
    """Create managers over the registry; every manager is shut down afterwards."""
    managers: list[JobManager] = []

    def build(policy_override: PollingPolicy | None = None, **adapters: ModelAdapter) -> JobManager:
        manager = JobManager(
            JobStore(),
            registry_factory(**adapters),
            storage=storage,
            policy=policy_override or policy,
            modes=ModeCatalog.load_default(),
        )
        managers.append(manager)
        return manager

    yield build

    for manager in managers:
        await manager.shutdown()


@pytest_asyncio.fixture
async def manager(manager_factory: Callable[..., JobManager]) -> JobManager:
    return manager_factory()
