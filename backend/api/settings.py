from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DBSession
from database import get_db
from dependencies import get_current_owner
from repositories.cache_mount_repository import CacheMountRepository
from repositories.setting_repository import SettingRepository
from schemas import CacheLocationsUpdate, PauseUpdate
from services.cache_locator import cache_root_for_custom
from constants import SettingKeys
from utils.error_handlers import handle_api_errors
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/settings")
def get_settings(db: DBSession = Depends(get_db)):
    """Engine-wide runtime toggles"""
    repo = SettingRepository(db)
    return {
        SettingKeys.PAUSE_PROCESSING: repo.get_bool(SettingKeys.PAUSE_PROCESSING, False),
        SettingKeys.WATCH_ENABLED: repo.get_bool(SettingKeys.WATCH_ENABLED, True),
    }


@router.put("/settings/pause")
def set_paused(update: PauseUpdate, db: DBSession = Depends(get_db)):
    """Stop (or resume) claiming new HLS jobs; running transcodes finish"""
    SettingRepository(db).set_value(SettingKeys.PAUSE_PROCESSING, 'true' if update.paused else 'false')
    db.commit()
    logger.info(f"⏸️ Processing {'paused' if update.paused else 'resumed'}")
    return {"paused": update.paused}


@router.get("/settings/cache-locations")
def get_cache_locations(owner: str = Depends(get_current_owner), db: DBSession = Depends(get_db)):
    """Custom cache roots probed after the relative and home locations"""
    return {"locations": CacheMountRepository(db).get_paths(owner)}


@router.put("/settings/cache-locations")
@handle_api_errors("Cache locations update")
def update_cache_locations(
    update: CacheLocationsUpdate,
    owner: str = Depends(get_current_owner),
    db: DBSession = Depends(get_db),
):
    """Replace the current user's custom cache roots (order is probe order)"""
    paths = [loc.strip() for loc in update.locations if loc and loc.strip()]
    # Validates each path; ".cached_hls" is appended when probing
    for path in paths:
        cache_root_for_custom(path)
    locations = CacheMountRepository(db).replace_all(owner, paths)
    db.commit()
    return {"locations": locations}
