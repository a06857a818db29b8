"""
Chat message CRUD.
"""
from typing import Any, Dict, List, Optional, Tuple
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc, func, or_

from relay.model.chat_message import ChatMessage
from relay.crud.base import CRUDBase


class CRUDChatMessage(CRUDBase[ChatMessage, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, message_id: uuid.UUID) -> Optional[ChatMessage]:
        return db.query(self.model).filter(self.model.id == message_id).first()

    def list_by_room_paginated(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        page: int = 1,
        limit: int = 50,
        before_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[ChatMessage], int]:
        """
        List messages in a room, newest first. Deleted messages stay in the
        list as tombstones. With before_id, returns the page of messages
        strictly older than that message and ignores page.
        """
        base = db.query(self.model).filter(self.model.room_id == room_id)
        if before_id:
            msg = self.get_by_id(db, message_id=before_id)
            if msg and msg.room_id == room_id:
                base = base.filter(
                    or_(
                        self.model.created_at < msg.created_at,
                        and_(
                            self.model.created_at == msg.created_at,
                            self.model.id < msg.id,
                        ),
                    )
                )
        total = base.with_entities(func.count(self.model.id)).scalar() or 0
        skip = (page - 1) * limit if not before_id else 0
        items = (
            base.order_by(desc(self.model.created_at), desc(self.model.id))
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total


chat_message_crud = CRUDChatMessage(ChatMessage)
