"""
Watch registration endpoints (automatic HLS generation for directories)
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from constants import HTTPStatus
from database import get_db
from dependencies import EngineServices, get_current_owner, get_services
from domain.value_objects import CachePolicy
from exceptions import NotFoundError
from repositories.watch_repository import WatchRepository
from schemas import WatchCreate, WatchOut
from services.file_store import normalize_logical_path
from utils.error_handlers import handle_api_errors
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _owned(repo: WatchRepository, watch_id: str, owner: str):
    registration = repo.get_owned(watch_id, owner)
    if registration is None:
        raise NotFoundError(f"Watch not found: {watch_id}", {"watch_id": watch_id})
    return registration


@router.post("/watches", response_model=WatchOut, status_code=HTTPStatus.CREATED)
@handle_api_errors("Watch registration")
def register_watch(
    request: WatchCreate,
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
    services: EngineServices = Depends(get_services),
):
    """Register a directory (re-registering updates the policy and re-enables it)"""
    directory = normalize_logical_path(request.directory)
    if not services.file_store.is_dir(owner, directory):
        raise NotFoundError(f"Directory not found: {directory}", {"directory": directory})

    policy = CachePolicy.from_dict(request.policy.model_dump())
    registration = WatchRepository(db).upsert(owner, directory, policy)
    db.commit()
    db.refresh(registration)
    logger.info(f"👀 Watching {owner}:{directory} ({policy.location})")
    return registration


@router.get("/watches", response_model=List[WatchOut])
def list_watches(owner: str = Depends(get_current_owner), db: Session = Depends(get_db)):
    """All registrations of the current user, enabled or not"""
    return WatchRepository(db).get_for_owner(owner)


@router.post("/watches/{watch_id}/disable", response_model=WatchOut)
@handle_api_errors("Watch disable")
def disable_watch(watch_id: str, owner: str = Depends(get_current_owner), db: Session = Depends(get_db)):
    repo = WatchRepository(db)
    registration = _owned(repo, watch_id, owner)
    repo.disable(registration)
    db.commit()
    db.refresh(registration)
    return registration


@router.delete("/watches/{watch_id}", status_code=HTTPStatus.NO_CONTENT)
@handle_api_errors("Watch removal")
def delete_watch(watch_id: str, owner: str = Depends(get_current_owner), db: Session = Depends(get_db)):
    repo = WatchRepository(db)
    repo.delete(_owned(repo, watch_id, owner))
    db.commit()


@router.post("/watches/scan")
@handle_api_errors("Watch scan")
def scan_now(owner: str = Depends(get_current_owner), services: EngineServices = Depends(get_services)):
    """Scan the current user's registrations immediately"""
    return services.watcher.scan_all(owner=owner).to_dict()
