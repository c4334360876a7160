"""
Clip export endpoint
"""
from fastapi import APIRouter, Depends

from dependencies import EngineServices, get_current_owner, get_services
from schemas import ClipExportRequest
from utils.error_handlers import handle_api_errors

router = APIRouter()


@router.post("/clips/export")
@handle_api_errors("Clip export")
def export_clip(
    request: ClipExportRequest,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Cut [start, end) out of a video without re-encoding"""
    return services.clips.export(
        owner,
        request.path,
        request.start,
        request.end,
        export_dir=request.export_dir,
        clip_filename=request.clip_filename,
    )
