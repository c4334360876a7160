"""
On-demand proxy endpoints.

POST /transcode/proxy blocks until the proxy MP4 exists (it is a sync route,
so FastAPI runs it on the threadpool). The stream endpoint serves the
finished file with Range support and never a partial one.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from constants import HTTPStatus, ProgressModes
from dependencies import EngineServices, get_current_owner, get_services
from domain.value_objects import is_valid_cache_key
from exceptions import ArtifactNotFoundError
from schemas import ArtifactOut, ProxyRequest
from utils.error_handlers import handle_api_errors

router = APIRouter()


@router.post("/transcode/proxy", response_model=ArtifactOut)
@handle_api_errors("Proxy generation")
def create_proxy(
    request: ProxyRequest,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Return the proxy of a video, transcoding it first on a cache miss"""
    source = services.file_store.stat(owner, request.path)
    ref = services.executor.get_or_create_proxy(source, force=request.force)
    return {
        **ref.to_dict(),
        "stream_url": f"/api/transcode/proxy-stream/{ref.cache_key}",
    }


@router.get("/transcode/proxy-stream/{cache_key}")
@handle_api_errors("Proxy stream")
async def stream_proxy(
    cache_key: str,
    request: Request,
    range_header: Optional[str] = Header(default=None, alias="Range"),
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Stream a finished proxy file of the current user"""
    if not is_valid_cache_key(cache_key):
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Invalid cache key")

    services.evictor.sweep()
    record = services.progress_store.load(cache_key, ProgressModes.PROXY)
    if record is None or record.owner != owner:
        raise ArtifactNotFoundError(cache_key)
    path = services.locator.proxy_path(cache_key)
    if not path.is_file():
        raise ArtifactNotFoundError(cache_key)
    return services.artifact_server.serve(path, range_header, request)


@router.get("/transcode/status")
def transcoder_status(
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Running transcoder processes and queue counts"""
    return {
        "active_processes": services.runner.active_processes(),
        "active_streams": len(services.stream_registry),
        "queue": services.queue.stats(),
    }
