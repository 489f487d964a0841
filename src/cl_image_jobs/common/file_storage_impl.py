from __future__ import annotations

import hashlib
import shutil
from os import PathLike
from pathlib import Path
from typing_extensions import override

import aiofiles

from .file_storage import FileStorage, ScopeCreationError, StoredFile


class LocalFileStorage(FileStorage):
    """
    Local filesystem implementation of FileStorage.

    Layout:
        base_dir/
            <scope>/
                <relative_path>

    Public URLs take the form `<public_base_url>/<scope>/<relative_path>`,
    matching the `/files/{scope}/{path}` route of the HTTP surface.
    """

    def __init__(self, base_dir: str | PathLike[str], public_base_url: str = "/files"):
        self._base_dir: Path = Path(base_dir).expanduser().resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._public_base_url: str = public_base_url.rstrip("/")

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _scope_dir(self, scope: str) -> Path:
        return self._base_dir / scope

    def _safe_path(self, scope: str, relative_path: str | None = None) -> Path:
        """
        Resolve and validate a scope-relative path.
        Prevents path traversal.
        """
        if not scope or "/" in scope or "\\" in scope or scope in (".", ".."):
            raise ValueError(f"Invalid storage scope: {scope!r}")

        base = self._scope_dir(scope).resolve()
        path = base if relative_path is None else (base / relative_path)
        resolved = path.resolve()

        if base not in resolved.parents and resolved != base:
            raise ValueError("Invalid relative path (path traversal detected)")

        return resolved

    # ------------------------------------------------------------------
    # Scope lifecycle
    # ------------------------------------------------------------------

    @override
    def create_scope(self, scope: str) -> None:
        try:
            self._safe_path(scope).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ScopeCreationError(scope) from exc

    @override
    def release(self, scope: str) -> bool:
        path = self._safe_path(scope)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
            return True
        except OSError:
            return False

    @override
    def has_scope(self, scope: str) -> bool:
        return self._safe_path(scope).is_dir()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    @override
    async def save(self, scope: str, relative_path: str, data: bytes) -> StoredFile:
        dst = self.allocate_path(scope, relative_path)
        async with aiofiles.open(dst, "wb") as f:
            _ = await f.write(data)

        return StoredFile(
            scope=scope,
            relative_path=relative_path,
            url=self.public_url(scope, relative_path),
            size=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    @override
    def allocate_path(self, scope: str, relative_path: str) -> Path:
        self.create_scope(scope)
        path = self._safe_path(scope, relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    # ------------------------------------------------------------------
    # Reading / resolving
    # ------------------------------------------------------------------

    @override
    def resolve_path(self, scope: str, relative_path: str | None = None) -> Path:
        return self._safe_path(scope, relative_path)

    @override
    def public_url(self, scope: str, relative_path: str) -> str:
        return f"{self._public_base_url}/{scope}/{relative_path.lstrip('/')}"
