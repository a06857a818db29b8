"""
Chat participant CRUD.
Only rows with left_at IS NULL count as current membership.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session

from relay.model.chat_participant import ChatParticipant, ROLE_ADMIN
from relay.crud.base import CRUDBase


class CRUDChatParticipant(CRUDBase[ChatParticipant, Dict[str, Any], Dict[str, Any]]):
    def _active(self, db: Session):
        return db.query(self.model).filter(self.model.left_at.is_(None))

    def get_active(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ChatParticipant]:
        return (
            self._active(db)
            .filter(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
            )
            .first()
        )

    def list_active_by_room(self, db: Session, *, room_id: uuid.UUID) -> List[ChatParticipant]:
        return (
            self._active(db)
            .filter(self.model.room_id == room_id)
            .order_by(self.model.joined_at, self.model.id)
            .all()
        )

    def list_active_user_ids(self, db: Session, *, room_id: uuid.UUID) -> List[uuid.UUID]:
        rows = (
            self._active(db)
            .with_entities(self.model.user_id)
            .filter(self.model.room_id == room_id)
            .all()
        )
        return [r[0] for r in rows]

    def list_other_active(
        self, db: Session, *, room_id: uuid.UUID, exclude_user_id: uuid.UUID
    ) -> List[ChatParticipant]:
        return (
            self._active(db)
            .filter(
                self.model.room_id == room_id,
                self.model.user_id != exclude_user_id,
            )
            .order_by(self.model.joined_at, self.model.id)
            .all()
        )

    def list_active_room_ids_for_user(self, db: Session, *, user_id: uuid.UUID) -> List[uuid.UUID]:
        rows = (
            self._active(db)
            .with_entities(self.model.room_id)
            .filter(self.model.user_id == user_id)
            .all()
        )
        return [r[0] for r in rows]

    def count_active_admins(self, db: Session, *, room_id: uuid.UUID) -> int:
        return (
            self._active(db)
            .filter(self.model.room_id == room_id, self.model.role == ROLE_ADMIN)
            .count()
        )

    def mark_read(
        self, db: Session, *, participant: ChatParticipant, read_at: datetime, commit: bool = True
    ) -> ChatParticipant:
        return self.update(
            db,
            db_obj=participant,
            obj_in={"unread_count": 0, "last_read_at": read_at},
            commit=commit,
        )

    def increment_unread_for_others(
        self, db: Session, *, room_id: uuid.UUID, exclude_user_id: uuid.UUID
    ) -> None:
        """Bump unread_count for every other active participant. Flushes, does not commit."""
        others = self.list_other_active(
            db, room_id=room_id, exclude_user_id=exclude_user_id
        )
        for p in others:
            p.unread_count = (p.unread_count or 0) + 1
            db.add(p)
        if others:
            db.flush()


chat_participant_crud = CRUDChatParticipant(ChatParticipant)
