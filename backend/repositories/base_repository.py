"""
Base repository for the engine's tables.

Jobs, watches, cache mounts and notifications carry an owner column; a user
only ever sees their own rows. Settings are global and never use owned_by().
"""

from typing import Any, Generic, Optional, Type, TypeVar
from sqlalchemy.orm import Query, Session

T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Generic repository over one owner-scoped model.

    Repositories flush but never commit; the caller owns the transaction
    (a request's session or a worker iteration's session).
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model

    def owned_by(self, owner: str) -> Query:
        """Query restricted to one owner's rows"""
        return self.db.query(self.model).filter(self.model.owner == owner)

    def create(self, obj: T) -> T:
        """Add a record and flush so generated ids are available"""
        self.db.add(obj)
        self.db.flush()
        return obj

    def get_by_id(self, id: Any) -> Optional[T]:
        return self.db.query(self.model).filter(self.model.id == id).first()

    def get_owned(self, id: Any, owner: str) -> Optional[T]:
        """
        Fetch a record only if it belongs to owner.

        Another user's record is reported as missing, not as forbidden, so
        ids cannot be probed across owners.
        """
        return self.owned_by(owner).filter(self.model.id == id).first()

    def delete(self, obj: T) -> None:
        self.db.delete(obj)
        self.db.flush()
