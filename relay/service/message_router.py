"""
Message router: validates, persists and fans out room messages.

Every operation holds the room lock from the membership check until fan-out
finishes, and commits before anything is delivered.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.chat.hub import ChatHub
from relay.core.exceptions import BadRequest, Conflict, NotFound, NotMessageSender, ServiceUnavailable
from relay.crud import chat_message_crud, chat_participant_crud, chat_room_crud
from relay.model.chat_message import ChatMessage, MESSAGE_TYPE_TEXT, MESSAGE_TYPES
from relay.schema.chat import MessageResponse, ReadReceipt
from relay.schema.common import Page
from relay.service.room_registry import RoomRegistry
from relay.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


class MessageRouter:
    """Send, edit, delete, list and read messages of a room."""

    def __init__(self, db: Session, hub: ChatHub):
        self.db = db
        self.hub = hub
        self.rooms = RoomRegistry(db, hub)

    async def send(
        self,
        room_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        message_type: str = MESSAGE_TYPE_TEXT,
        reply_to_id: Optional[uuid.UUID] = None,
    ) -> MessageResponse:
        content = (content or "").strip()
        if not content:
            raise BadRequest(
                message="Message content cannot be empty or whitespace only.",
                code="EMPTY_CONTENT",
            )
        if message_type not in MESSAGE_TYPES:
            raise BadRequest(message="Unknown message type.", code="INVALID_MESSAGE_TYPE")

        async with self.hub.room_locks.hold(room_id):
            room, sender = self.rooms.require_member(room_id, sender_id)
            if reply_to_id:
                quoted = chat_message_crud.get_by_id(self.db, message_id=reply_to_id)
                if not quoted or quoted.room_id != room_id:
                    raise BadRequest(
                        message="Replied-to message must exist and belong to this room.",
                        code="INVALID_REPLY",
                    )
            now = utcnow()
            try:
                msg = chat_message_crud.create_from_dict(
                    self.db,
                    obj_in={
                        "room_id": room_id,
                        "sender_id": sender_id,
                        "content": content,
                        "message_type": message_type,
                        "reply_to_id": reply_to_id,
                        "created_at": now,
                    },
                    commit=False,
                )
                # Message row must exist before the room points at it
                chat_room_crud.update(
                    self.db,
                    db_obj=room,
                    obj_in={"last_message_id": msg.id, "last_message_at": now},
                    commit=False,
                )
                chat_participant_crud.increment_unread_for_others(
                    self.db, room_id=room_id, exclude_user_id=sender_id
                )
                chat_participant_crud.mark_read(self.db, participant=sender, read_at=now, commit=False)
                self.db.commit()
                self.db.refresh(msg)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to save chat message: %s", e)
                raise ServiceUnavailable(message="Failed to save message. Please try again.")

            result = MessageResponse.from_model(msg)
            await self._fan_out(room_id, "message_created", result)
            await self.hub.typing.stop(room_id, sender_id)
            return result

    async def edit(self, message_id: uuid.UUID, user_id: uuid.UUID, content: str) -> MessageResponse:
        content = (content or "").strip()
        if not content:
            raise BadRequest(
                message="Message content cannot be empty or whitespace only.",
                code="EMPTY_CONTENT",
            )
        msg = self._get_message_or_404(message_id)
        async with self.hub.room_locks.hold(msg.room_id):
            self.db.refresh(msg)
            self.rooms.require_member(msg.room_id, user_id)
            self._require_sender(msg, user_id)
            if msg.is_deleted:
                raise Conflict(message="Deleted messages cannot be edited.", code="MESSAGE_DELETED")
            try:
                chat_message_crud.update(
                    self.db,
                    db_obj=msg,
                    obj_in={"content": content, "is_edited": True, "edited_at": utcnow()},
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to edit chat message: %s", e)
                raise ServiceUnavailable(message="Failed to edit message. Please try again.")
            result = MessageResponse.from_model(msg)
            await self._fan_out(msg.room_id, "message_edited", result)
            return result

    async def delete(self, message_id: uuid.UUID, user_id: uuid.UUID) -> MessageResponse:
        """Tombstone the message. Repeating the call returns the tombstone."""
        msg = self._get_message_or_404(message_id)
        async with self.hub.room_locks.hold(msg.room_id):
            self.db.refresh(msg)
            self.rooms.require_member(msg.room_id, user_id)
            self._require_sender(msg, user_id)
            if msg.is_deleted:
                return MessageResponse.from_model(msg)
            try:
                chat_message_crud.update(
                    self.db,
                    db_obj=msg,
                    obj_in={"is_deleted": True, "deleted_at": utcnow()},
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to delete chat message: %s", e)
                raise ServiceUnavailable(message="Failed to delete message. Please try again.")
            logger.info("Message %s deleted by %s", message_id, user_id)
            result = MessageResponse.from_model(msg)
            await self._fan_out(msg.room_id, "message_deleted", result)
            return result

    def list_messages(
        self,
        room_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        page: int = 1,
        limit: int = 50,
        before_id: Optional[uuid.UUID] = None,
    ) -> Page[MessageResponse]:
        self.rooms.require_member(room_id, user_id)
        if before_id:
            cursor = chat_message_crud.get_by_id(self.db, message_id=before_id)
            if not cursor or cursor.room_id != room_id:
                raise BadRequest(
                    message="before_id must name a message in this room.",
                    code="INVALID_CURSOR",
                )
        items, total = chat_message_crud.list_by_room_paginated(
            self.db, room_id=room_id, page=page, limit=limit, before_id=before_id
        )
        return Page[MessageResponse].build(
            [MessageResponse.from_model(m) for m in items],
            page=page,
            limit=limit,
            total=total,
        )

    async def mark_read(self, room_id: uuid.UUID, user_id: uuid.UUID) -> ReadReceipt:
        async with self.hub.room_locks.hold(room_id):
            _, part = self.rooms.require_member(room_id, user_id)
            now = utcnow()
            try:
                chat_participant_crud.mark_read(self.db, participant=part, read_at=now)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to mark room read: %s", e)
                raise ServiceUnavailable(message="Failed to update read state. Please try again.")
            receipt = ReadReceipt(room_id=room_id, user_id=user_id, last_read_at=as_utc(part.last_read_at))
            await self._fan_out(room_id, "room_read", receipt)
            return receipt

    def _get_message_or_404(self, message_id: uuid.UUID) -> ChatMessage:
        msg = chat_message_crud.get_by_id(self.db, message_id=message_id)
        if not msg:
            raise NotFound("Message")
        return msg

    @staticmethod
    def _require_sender(msg: ChatMessage, user_id: uuid.UUID) -> None:
        if msg.sender_id != user_id:
            raise NotMessageSender()

    async def _fan_out(self, room_id: uuid.UUID, event: str, result) -> None:
        """Deliver to every connected active participant, sender's other devices included."""
        audience = chat_participant_crud.list_active_user_ids(self.db, room_id=room_id)
        await self.hub.connections.send_to_users(
            audience, event, result.model_dump(mode="json"), room_id=room_id
        )
