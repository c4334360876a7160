"""
Local file store.

Maps owner-relative logical paths onto <storage_root>/<owner>/files/ on the
local disk. Logical paths are normalized before use and may never resolve
outside the owner's root.
"""
import mimetypes
import os
import posixpath
from pathlib import Path
from typing import List
import logging

from domain.value_objects import SourceFile
from exceptions import (
    OutputDirectoryUnavailableError,
    PermissionDeniedError,
    SourceNotFoundError,
    ValidationError,
)
from services.interfaces import IFileStore

logger = logging.getLogger(__name__)

mimetypes.add_type('video/quicktime', '.mov')
mimetypes.add_type('video/mp4', '.m4v')


def normalize_logical_path(path: str) -> str:
    """
    Normalize a logical path to an absolute POSIX form.

    "Movies//a/../clip.mp4" -> "/Movies/clip.mp4". Leading ".." segments are
    clamped at the root by normpath, so the result never climbs above "/".
    """
    if path is None:
        raise ValidationError("Path is required", invalid_fields={"path": None})
    if '\x00' in path:
        raise ValidationError("Path contains a NUL byte", invalid_fields={"path": path})
    normalized = posixpath.normpath('/' + path.strip().lstrip('/'))
    # normpath keeps a leading '//' as-is
    return '/' + normalized.lstrip('/')


class LocalFileStore(IFileStore):
    """IFileStore over a local directory tree"""

    def __init__(self, storage_root: Path):
        self.storage_root = Path(storage_root)

    def owner_root(self, owner: str) -> Path:
        if not owner or owner in ('.', '..') or '/' in owner or '\\' in owner:
            raise ValidationError(f"Invalid owner id: {owner!r}", invalid_fields={"owner": owner})
        return self.storage_root / owner / "files"

    def local_path(self, owner: str, path: str) -> Path:
        root = self.owner_root(owner)
        logical = normalize_logical_path(path)
        candidate = root / logical.lstrip('/')

        # Symlinks may still point outside the owner's tree
        resolved_root = root.resolve()
        resolved = candidate.resolve()
        if resolved != resolved_root and resolved_root not in resolved.parents:
            raise PermissionDeniedError(
                f"Path escapes the owner's storage: {path}",
                {"owner": owner, "path": path},
            )
        return candidate

    def exists(self, owner: str, path: str) -> bool:
        return self.local_path(owner, path).exists()

    def is_dir(self, owner: str, path: str) -> bool:
        return self.local_path(owner, path).is_dir()

    def is_readable(self, owner: str, path: str) -> bool:
        local = self.local_path(owner, path)
        return local.is_file() and os.access(local, os.R_OK)

    def stat(self, owner: str, path: str) -> SourceFile:
        logical = normalize_logical_path(path)
        local = self.local_path(owner, logical)
        if not local.is_file():
            raise SourceNotFoundError(owner, logical)
        st = local.stat()
        mime_type, _ = mimetypes.guess_type(local.name)
        return SourceFile(
            owner=owner,
            path=logical,
            size=st.st_size,
            mtime=int(st.st_mtime),
            mime_type=mime_type or "application/octet-stream",
        )

    def list_dir(self, owner: str, path: str) -> List[str]:
        local = self.local_path(owner, path)
        if not local.is_dir():
            return []
        return sorted(entry.name for entry in local.iterdir())

    def make_dirs(self, owner: str, path: str) -> Path:
        local = self.local_path(owner, path)
        if local.exists() and not local.is_dir():
            raise OutputDirectoryUnavailableError(path, "exists and is not a directory")
        try:
            local.mkdir(parents=True, exist_ok=True)
        except FileExistsError:
            # A parent component is a regular file
            raise OutputDirectoryUnavailableError(path, "a parent path is not a directory")
        except OSError as e:
            raise OutputDirectoryUnavailableError(path, str(e))
        return local
