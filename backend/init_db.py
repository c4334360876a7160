from database import engine, Base, SessionLocal
from models import Setting
from constants import SettingKeys
import logging

logger = logging.getLogger(__name__)

# Runtime toggles created on first start; existing values are never overwritten
DEFAULT_SETTINGS = {
    # When 'true', the worker pool stops claiming new HLS jobs
    SettingKeys.PAUSE_PROCESSING: 'false',
    # When 'false', the periodic directory watcher skips its scans
    SettingKeys.WATCH_ENABLED: 'true',
}


def init_database(bind=None, session_factory=None):
    """Create tables and seed default settings"""
    Base.metadata.create_all(bind=bind or engine)

    db = (session_factory or SessionLocal)()
    try:
        for key, value in DEFAULT_SETTINGS.items():
            existing = db.query(Setting).filter(Setting.key == key).first()
            if not existing:
                db.add(Setting(key=key, value=value))

        db.commit()
        logger.info("✅ Database initialized successfully")
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
