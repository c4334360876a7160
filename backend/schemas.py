from pydantic import BaseModel, Field, validator
from typing import List, Optional, Any, Dict, Literal, Union
from datetime import datetime

from constants import ResolutionPresets


# Cache policy
class CachePolicyRequest(BaseModel):
    """Where and how to generate an HLS cache"""
    location: Literal['relative', 'home', 'custom'] = 'relative'
    custom_path: Optional[str] = None
    overwrite_existing: bool = False
    resolutions: List[str] = Field(default_factory=lambda: list(ResolutionPresets.DEFAULT))
    notify_completion: bool = True

    @validator('resolutions')
    def validate_resolutions(cls, v):
        unknown = [r for r in v if not ResolutionPresets.is_known(r)]
        if unknown:
            raise ValueError(f"Unknown resolutions: {', '.join(unknown)}")
        return v

    @validator('custom_path')
    def validate_custom_path(cls, v, values):
        if values.get('location') == 'custom' and not (v and v.strip()):
            raise ValueError("custom_path is required for the custom location")
        return v


class SourceFileRef(BaseModel):
    """A file given as name + directory, as the file browser sends it"""
    filename: str
    directory: str = '/'


class GenerateRequest(BaseModel):
    files: List[Union[str, SourceFileRef]] = Field(..., description="Logical paths, or {filename, directory} objects")
    policy: CachePolicyRequest = Field(default_factory=CachePolicyRequest)

    @validator('files')
    def validate_files(cls, v):
        if not v:
            raise ValueError("At least one file is required")
        return v

    def paths(self) -> List[str]:
        result = []
        for entry in self.files:
            if isinstance(entry, str):
                result.append(entry)
            else:
                result.append(f"{entry.directory.rstrip('/')}/{entry.filename}")
        return result


class GenerateResponse(BaseModel):
    batch_id: str
    jobs: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]] = []


# Proxy
class ProxyRequest(BaseModel):
    path: str
    force: bool = False


class ArtifactOut(BaseModel):
    kind: str
    cache_key: str
    cache_path: Optional[str] = None
    manifest: Optional[str] = None
    manifest_path: Optional[str] = None
    stream_url: Optional[str] = None


class CacheCheckResponse(BaseModel):
    path: str
    cache_key: str
    exists: bool
    artifact: Optional[ArtifactOut] = None


# Progress
class ProgressOut(BaseModel):
    cache_key: str
    status: str
    progress: float = 0.0
    frame: int = 0
    fps: float = 0.0
    time: str = "00:00:00"
    speed: str = "N/A"
    bitrate: str = "N/A"
    size: str = "N/A"
    message: str = ""
    error: Optional[str] = None
    job_id: Optional[str] = None
    started_at: Optional[str] = None
    updated_at: Optional[str] = None


class BatchProgressOut(BaseModel):
    batch_id: str
    status: str
    progress: float
    total: int
    counts: Dict[str, int]
    files: List[ProgressOut]


# Watches
class WatchCreate(BaseModel):
    directory: str
    policy: CachePolicyRequest = Field(default_factory=CachePolicyRequest)

    @validator('directory')
    def validate_directory(cls, v):
        if not v or not v.strip():
            raise ValueError("directory is required")
        return v


class WatchOut(BaseModel):
    id: str
    owner: str
    directory: str
    cache_location: str
    custom_path: Optional[str] = None
    overwrite_existing: bool
    notify_completion: bool
    resolutions: List[str]
    enabled: bool
    created_at: datetime
    disabled_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Jobs
class JobOut(BaseModel):
    id: str
    batch_id: str
    kind: str
    state: str
    owner: str
    cache_key: str
    priority: int
    retries: int
    max_retries: int
    error_message: Optional[str] = None
    failure_category: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Clips
class ClipExportRequest(BaseModel):
    path: str
    start: float = Field(..., ge=0)
    end: float = Field(..., gt=0)
    export_dir: str = "clips"
    clip_filename: Optional[str] = None

    @validator('end')
    def validate_range(cls, v, values):
        start = values.get('start')
        if start is not None and v <= start:
            raise ValueError("end must be after start")
        return v


# Settings
class CacheLocationsUpdate(BaseModel):
    locations: List[str]


class PauseUpdate(BaseModel):
    paused: bool


# Notifications
class NotificationOut(BaseModel):
    id: int
    event_type: str
    subject: str
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime
    read_at: Optional[datetime] = None
