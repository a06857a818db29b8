"""
Presence CRUD with last-write-wins upserts.
"""
from datetime import datetime
from typing import Iterable, List, Optional
import uuid
from sqlalchemy.orm import Session

from relay.model.presence import UserPresence
from relay.crud.base import CRUDBase
from relay.utils.time import as_utc


class CRUDPresence(CRUDBase[UserPresence, dict, dict]):
    def get_for_user(self, db: Session, *, user_id: uuid.UUID) -> Optional[UserPresence]:
        return db.get(self.model, user_id)

    def list_for_users(self, db: Session, *, user_ids: Iterable[uuid.UUID]) -> List[UserPresence]:
        ids = list(set(user_ids))
        if not ids:
            return []
        return db.query(self.model).filter(self.model.user_id.in_(ids)).all()

    def upsert_if_newer(
        self,
        db: Session,
        *,
        user_id: uuid.UUID,
        status: str,
        at: datetime,
        last_seen_at: Optional[datetime] = None,
    ) -> Optional[UserPresence]:
        """
        Write status for user_id unless a newer write is already stored.
        Returns the stored row, or None when the write lost.
        """
        row = self.get_for_user(db, user_id=user_id)
        if row is None:
            return self.create_from_dict(
                db,
                obj_in={
                    "user_id": user_id,
                    "status": status,
                    "updated_at": at,
                    "last_seen_at": last_seen_at or at,
                },
            )
        if as_utc(row.updated_at) > as_utc(at):
            return None
        values = {"status": status, "updated_at": at}
        if last_seen_at is not None:
            values["last_seen_at"] = last_seen_at
        return self.update(db, db_obj=row, obj_in=values)


presence_crud = CRUDPresence(UserPresence)
