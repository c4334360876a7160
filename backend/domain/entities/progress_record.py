"""
ProgressRecord Entity

Generation state of one cache key in one mode. owner is the user the source
file belongs to; routes only report records of the requesting user. Persisted as JSON so that progress
survives worker restarts and is visible to every process.
"""

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from typing import Optional

from constants import ProgressStatus


def _utcnow_iso() -> str:
    return datetime.utcnow().isoformat()


@dataclass
class ProgressRecord:
    cache_key: str
    status: str = ProgressStatus.NOT_FOUND
    progress: float = 0.0
    frame: int = 0
    fps: float = 0.0
    time: str = "00:00:00"
    speed: str = "N/A"
    bitrate: str = "N/A"
    size: str = "N/A"
    message: str = ""
    error: Optional[str] = None
    owner: Optional[str] = None
    job_id: Optional[str] = None
    started_at: Optional[str] = None
    updated_at: str = field(default_factory=_utcnow_iso)

    @property
    def is_terminal(self) -> bool:
        return self.status in ProgressStatus.TERMINAL

    def touch(self) -> None:
        self.updated_at = _utcnow_iso()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressRecord":
        """Build from a persisted blob, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        return cls(**values)

    @classmethod
    def not_found(cls, cache_key: str) -> "ProgressRecord":
        return cls(cache_key=cache_key, status=ProgressStatus.NOT_FOUND, message="No cache generation found")
