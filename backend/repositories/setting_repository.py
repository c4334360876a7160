"""
Setting repository: runtime toggles stored as key/value rows.
"""

from typing import Dict, Optional
from sqlalchemy.orm import Session

from models import Setting
from .base_repository import BaseRepository


class SettingRepository(BaseRepository[Setting]):
    """Repository for Setting operations."""

    def __init__(self, db: Session):
        super().__init__(db, Setting)

    def get_by_id(self, key: str) -> Optional[Setting]:
        return self.db.query(self.model).filter(self.model.key == key).first()

    def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        setting = self.get_by_id(key)
        return setting.value if setting is not None else default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_value(key)
        if value is None:
            return default
        return str(value).strip().lower() in ('true', '1', 'yes')

    def set_value(self, key: str, value: str) -> Setting:
        setting = self.get_by_id(key)
        if setting is None:
            setting = Setting(key=key, value=value)
            self.db.add(setting)
        else:
            setting.value = value
        self.db.flush()
        return setting

    def as_dict(self) -> Dict[str, str]:
        return {s.key: s.value for s in self.db.query(self.model).all()}
