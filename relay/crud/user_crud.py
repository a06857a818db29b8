"""
User lookups. Users are managed elsewhere; this service only reads them.
"""
from typing import Iterable, List, Set
import uuid
from sqlalchemy.orm import Session
from relay.model.user import User
from relay.crud.base import CRUDBase


class CRUDUser(CRUDBase[User, dict, dict]):
    """User-specific read operations."""

    def list_by_ids(self, db: Session, user_ids: Iterable[uuid.UUID]) -> List[User]:
        ids = list(set(user_ids))
        if not ids:
            return []
        return db.query(self.model).filter(self.model.id.in_(ids)).all()

    def missing_ids(self, db: Session, user_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
        """Ids from user_ids that have no active user row."""
        wanted = set(user_ids)
        found = {u.id for u in self.list_by_ids(db, wanted) if u.is_active}
        return wanted - found


user_crud = CRUDUser(User)
