"""
Repository layer for data access abstraction.

This package contains repository classes that encapsulate database queries
and provide a clean interface for data access operations.
"""

from .base_repository import BaseRepository
from .job_repository import JobRepository
from .watch_repository import WatchRepository
from .cache_mount_repository import CacheMountRepository
from .setting_repository import SettingRepository

__all__ = [
    "BaseRepository",
    "JobRepository",
    "WatchRepository",
    "CacheMountRepository",
    "SettingRepository",
]
