"""
Chat room CRUD.
"""
from typing import Any, Dict, List, Optional, Tuple
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from relay.model.chat_room import ChatRoom
from relay.model.chat_participant import ChatParticipant
from relay.crud.base import CRUDBase


class CRUDChatRoom(CRUDBase[ChatRoom, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.id == room_id).first()

    def get_by_direct_key(self, db: Session, *, direct_key: str) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.direct_key == direct_key).first()

    def list_rooms_for_user(
        self,
        db: Session,
        *,
        user_id: uuid.UUID,
        room_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[ChatRoom], int]:
        """List rooms the user actively participates in, most recent activity first."""
        subq = (
            db.query(ChatParticipant.room_id)
            .filter(
                ChatParticipant.user_id == user_id,
                ChatParticipant.left_at.is_(None),
            )
        )
        base = db.query(self.model).filter(self.model.id.in_(subq))
        if room_type:
            base = base.filter(self.model.room_type == room_type)
        total = base.with_entities(func.count(self.model.id)).scalar() or 0
        skip = (page - 1) * limit
        activity = func.coalesce(self.model.last_message_at, self.model.created_at)
        items = (
            base.order_by(desc(activity), desc(self.model.created_at))
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total


chat_room_crud = CRUDChatRoom(ChatRoom)
