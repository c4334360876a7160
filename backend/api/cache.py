"""
HLS cache endpoints: queue generation, check for a cache, report progress,
serve manifests and segments, list videos of a directory.
"""
import posixpath
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from constants import CacheLayout, ContentTypes, HTTPStatus
from dependencies import EngineServices, get_current_owner, get_services
from domain.entities import ProgressRecord
from domain.value_objects import CachePolicy, is_valid_cache_key
from exceptions import ArtifactNotFoundError, NotFoundError
from schemas import (
    BatchProgressOut,
    CacheCheckResponse,
    GenerateRequest,
    GenerateResponse,
    ProgressOut,
)
from services.directory_watcher import discover_videos
from services.file_store import normalize_logical_path
from services.progress_tracker import summarize_batch
from utils.error_handlers import handle_api_errors

router = APIRouter()

SERVABLE_EXTENSIONS = tuple(ContentTypes.BY_EXTENSION.keys())


def artifact_out(ref) -> dict:
    data = ref.to_dict()
    if ref.is_hls:
        data["stream_url"] = f"/api/cache/hls{ref.manifest_path}"
    else:
        data["stream_url"] = f"/api/transcode/proxy-stream/{ref.cache_key}"
    return data


@router.post("/cache/generate", response_model=GenerateResponse, status_code=HTTPStatus.ACCEPTED)
@handle_api_errors("Cache generation")
def generate_cache(
    request: GenerateRequest,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Queue HLS generation for one or more videos; returns the batch id"""
    policy = CachePolicy.from_dict(request.policy.model_dump())
    return services.generation.generate(owner, request.paths(), policy)


@router.get("/cache/check", response_model=CacheCheckResponse)
@handle_api_errors("Cache check")
def check_cache(
    path: str = Query(..., description="Logical path of the video"),
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Whether a video has an HLS cache (preferred) or a proxy file"""
    source = services.file_store.stat(owner, path)
    ref = services.locator.find_cache(source)
    return {
        "path": source.path,
        "cache_key": source.cache_key,
        "exists": ref is not None,
        "artifact": artifact_out(ref) if ref is not None else None,
    }


@router.get("/cache/progress/{cache_key}", response_model=ProgressOut)
def get_progress(
    cache_key: str,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Progress of one cache key (not_found when nothing is known about it)"""
    if not is_valid_cache_key(cache_key):
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Invalid cache key")
    record = services.tracker.get_progress(cache_key)
    if record.owner != owner:
        # Another user's key is reported like an unknown one
        record = ProgressRecord.not_found(cache_key)
    return record.to_dict()


@router.get("/cache/progress", response_model=BatchProgressOut)
@handle_api_errors("Batch progress")
def get_batch_progress(
    job_id: str = Query(..., description="Batch id returned by /cache/generate"),
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Aggregate progress of every job in a batch"""
    jobs = [job for job in services.queue.get_batch(job_id) if job.owner == owner]
    if not jobs:
        raise NotFoundError(f"Batch not found: {job_id}", {"batch_id": job_id})

    records = services.tracker.get_many(job.cache_key for job in jobs)
    summary = summarize_batch(records)
    return {
        "batch_id": job_id,
        **summary,
        "files": [record.to_dict() for record in records],
    }


@router.get("/cache/hls/{cache_path:path}")
@handle_api_errors("HLS serve")
async def serve_hls(
    cache_path: str,
    request: Request,
    range_header: Optional[str] = Header(default=None, alias="Range"),
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Serve a manifest or segment from a cache directory, with Range support"""
    logical = normalize_logical_path(cache_path)
    directory, filename = posixpath.split(logical)

    # Only published files inside a cache directory are served
    if CacheLayout.CACHE_DIR_NAME not in directory.split('/'):
        raise ArtifactNotFoundError(logical)
    if filename.startswith('.') or not filename.lower().endswith(SERVABLE_EXTENSIONS):
        raise ArtifactNotFoundError(logical)

    local = services.file_store.local_path(owner, logical)
    return services.artifact_server.serve(local, range_header, request)


@router.get("/cache/discover")
@handle_api_errors("Video discovery")
def discover(
    directory: str = Query('/', description="Directory to scan recursively"),
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """List supported videos under a directory with their cache state"""
    if not services.file_store.is_dir(owner, directory):
        raise NotFoundError(f"Directory not found: {directory}", {"directory": directory})

    videos = []
    for source in discover_videos(services.file_store, owner, directory, services.config.supported_mime_types):
        ref = services.locator.find_existing(source)
        videos.append({
            "path": source.path,
            "size": source.size,
            "mtime": source.mtime,
            "mime_type": source.mime_type,
            "cache_key": source.cache_key,
            "has_cache": ref is not None,
            "manifest_path": ref.manifest_path if ref is not None else None,
        })
    return {"directory": normalize_logical_path(directory), "videos": videos, "total": len(videos)}
