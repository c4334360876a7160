"""
Cache mount repository: per-owner custom cache roots.
"""

from typing import List
from sqlalchemy.orm import Session

from models import CacheMount
from .base_repository import BaseRepository


class CacheMountRepository(BaseRepository[CacheMount]):
    """Repository for CacheMount operations."""

    def __init__(self, db: Session):
        super().__init__(db, CacheMount)

    def get_paths(self, owner: str) -> List[str]:
        """Mount paths of an owner in probe order"""
        rows = self.owned_by(owner).with_entities(self.model.path).order_by(
            self.model.position.asc(), self.model.id.asc()
        ).all()
        return [path for (path,) in rows]

    def add_if_missing(self, owner: str, path: str) -> CacheMount:
        mount = self.owned_by(owner).filter(self.model.path == path).first()
        if mount is None:
            position = self.owned_by(owner).count()
            mount = self.create(CacheMount(owner=owner, path=path, position=position))
        return mount

    def replace_all(self, owner: str, paths: List[str]) -> List[str]:
        """Replace an owner's mounts, keeping the given order and dropping duplicates"""
        self.owned_by(owner).delete(synchronize_session=False)
        seen = []
        for path in paths:
            if path in seen:
                continue
            seen.append(path)
            self.db.add(CacheMount(owner=owner, path=path, position=len(seen) - 1))
        self.db.flush()
        return seen
