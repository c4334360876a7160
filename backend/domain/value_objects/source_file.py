"""
SourceFile Value Object

Immutable snapshot of a video in an owner's file store.
"""

import posixpath
from dataclasses import dataclass

from .cache_key import compute_cache_key


@dataclass(frozen=True)
class SourceFile:
    """
    A source video as seen at one point in time.

    path is the logical, owner-relative path ("/Movies/clip.mp4"), never a
    host filesystem path.
    """

    owner: str
    path: str
    size: int
    mtime: int
    mime_type: str = "application/octet-stream"

    def __post_init__(self):
        if not self.owner:
            raise ValueError("SourceFile owner cannot be empty")
        if not self.path.startswith('/'):
            raise ValueError(f"SourceFile path must be absolute: {self.path}")
        if self.size < 0:
            raise ValueError(f"File size cannot be negative: {self.size}")

    @property
    def cache_key(self) -> str:
        return compute_cache_key(self.owner, self.path, self.mtime)

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path) or '/'

    @property
    def basename(self) -> str:
        return posixpath.basename(self.path)

    @property
    def stem(self) -> str:
        """Basename without its final extension ("clip.final.mp4" -> "clip.final")"""
        stem, _ext = posixpath.splitext(self.basename)
        return stem or self.basename

    def __str__(self) -> str:
        return f"{self.owner}:{self.path}"
