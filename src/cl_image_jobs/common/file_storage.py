"""
FileStorage Protocol - scoped storage for locally-created image references.

Every file lives under a *scope*: the adapter reference of a job (synthetic
previews, final images) or an upload id (edit sources and masks). Releasing a
scope deletes everything in it; the JobManager does so when a job is
cancelled or cleared from completed history.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class FileStorageError(Exception):
    """Base class for storage-related errors."""


class ScopeCreationError(FileStorageError):
    def __init__(self, scope: str):
        self.scope: str = scope
        super().__init__(f"Failed to create storage scope '{scope}'")


class StoredFile(BaseModel):
    """Metadata of a stored file."""

    scope: str
    relative_path: str = Field(..., description="Path of the file within its scope")
    url: str = Field(..., description="Public reference handed to callers")
    size: int = Field(..., ge=0, description="File size in bytes")
    sha256: str | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


@runtime_checkable
class FileStorage(Protocol):
    """
    Protocol for scope-based file storage.

    Implementations own the storage root, the directory layout and the
    mapping from stored files to public URLs. Callers interact only via
    scope ids and relative paths.
    """

    def create_scope(self, scope: str) -> None: ...

    def release(self, scope: str) -> bool:
        """
        Remove every file in a scope.

        Returns:
            True if something was removed, False if the scope did not exist.
        """
        ...

    def has_scope(self, scope: str) -> bool: ...

    async def save(self, scope: str, relative_path: str, data: bytes) -> StoredFile: ...

    def allocate_path(self, scope: str, relative_path: str) -> Path:
        """
        Allocate a filesystem path for writing.

        Intended for libraries that require filenames (PIL).
        """
        ...

    def resolve_path(self, scope: str, relative_path: str | None = None) -> Path: ...

    def public_url(self, scope: str, relative_path: str) -> str: ...
