"""
Watch repository: directory registrations for automatic HLS generation.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from domain.value_objects import CachePolicy
from models import WatchRegistration
from .base_repository import BaseRepository


class WatchRepository(BaseRepository[WatchRegistration]):
    """Repository for WatchRegistration operations."""

    def __init__(self, db: Session):
        super().__init__(db, WatchRegistration)

    def get_for_owner(self, owner: str) -> List[WatchRegistration]:
        return self.owned_by(owner).order_by(self.model.created_at.asc()).all()

    def get_by_directory(self, owner: str, directory: str) -> Optional[WatchRegistration]:
        return self.owned_by(owner).filter(self.model.directory == directory).first()

    def get_enabled(self) -> List[WatchRegistration]:
        return self.db.query(self.model).filter(
            self.model.enabled.is_(True)
        ).order_by(self.model.created_at.asc()).all()

    def upsert(self, owner: str, directory: str, policy: CachePolicy) -> WatchRegistration:
        """
        Register a directory, or update the policy of an existing registration.

        Re-registering also re-enables a registration the watcher disabled.
        """
        registration = self.get_by_directory(owner, directory)
        if registration is None:
            registration = WatchRegistration(owner=owner, directory=directory)
            self.db.add(registration)

        registration.cache_location = policy.location
        registration.custom_path = policy.custom_path
        registration.overwrite_existing = policy.overwrite_existing
        registration.resolutions = list(policy.resolutions)
        registration.notify_completion = policy.notify_completion
        registration.enabled = True
        registration.disabled_at = None
        self.db.flush()
        return registration

    def disable(self, registration: WatchRegistration, when: Optional[datetime] = None) -> WatchRegistration:
        registration.enabled = False
        registration.disabled_at = when or datetime.utcnow()
        self.db.flush()
        return registration

    def mark_scanned(self, registration: WatchRegistration, when: Optional[datetime] = None) -> None:
        registration.last_scan_at = when or datetime.utcnow()
        self.db.flush()

    @staticmethod
    def policy_of(registration: WatchRegistration) -> CachePolicy:
        return CachePolicy(
            location=registration.cache_location,
            custom_path=registration.custom_path,
            overwrite_existing=bool(registration.overwrite_existing),
            resolutions=tuple(registration.resolutions),
            notify_completion=bool(registration.notify_completion),
        )
