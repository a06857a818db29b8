"""
Room registry: rooms, participants and membership rules.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from relay.chat.hub import ChatHub
from relay.core.exceptions import (
    BadRequest,
    Conflict,
    NotFound,
    NotParticipant,
    NotRoomAdmin,
    ServiceUnavailable,
)
from relay.crud import chat_message_crud, chat_participant_crud, chat_room_crud, user_crud
from relay.model.chat_message import ChatMessage
from relay.model.chat_participant import ChatParticipant, ROLE_ADMIN, ROLE_MEMBER
from relay.model.chat_room import ChatRoom, ROOM_TYPE_DIRECT, ROOM_TYPE_GROUP, direct_key_for
from relay.schema.chat import LastMessagePreview, ParticipantResponse, RoomResponse
from relay.schema.common import Page
from relay.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class RoomRegistry:
    """Owns room and participant state. Mutations run under the room lock."""

    def __init__(self, db: Session, hub: ChatHub):
        self.db = db
        self.hub = hub

    # --- Membership checks ---

    def get_room_or_404(self, room_id: uuid.UUID) -> ChatRoom:
        room = chat_room_crud.get_by_id(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        return room

    def require_member(self, room_id: uuid.UUID, user_id: uuid.UUID) -> Tuple[ChatRoom, ChatParticipant]:
        """Unknown room -> 404, known room without active membership -> 403."""
        room = self.get_room_or_404(room_id)
        part = chat_participant_crud.get_active(self.db, room_id=room_id, user_id=user_id)
        if not part:
            raise NotParticipant()
        return room, part

    def is_member(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return chat_participant_crud.get_active(self.db, room_id=room_id, user_id=user_id) is not None

    # --- Rooms ---

    async def get_or_create_direct_room(
        self, user_id: uuid.UUID, other_user_id: uuid.UUID
    ) -> Tuple[RoomResponse, bool]:
        """Idempotent per unordered user pair. Returns (room, created)."""
        if other_user_id == user_id:
            raise BadRequest(
                message="other_user_id cannot be yourself.",
                code="INVALID_OTHER_USER",
            )
        if user_crud.missing_ids(self.db, [other_user_id]):
            raise NotFound("User")

        key = direct_key_for(user_id, other_user_id)
        async with self.hub.room_locks.hold(("direct", key)):
            room = chat_room_crud.get_by_direct_key(self.db, direct_key=key)
            if room:
                return self.room_view(room, user_id), False
            try:
                room = chat_room_crud.create_from_dict(
                    self.db,
                    obj_in={
                        "room_type": ROOM_TYPE_DIRECT,
                        "direct_key": key,
                        "created_by": user_id,
                    },
                    commit=False,
                )
                for uid in (user_id, other_user_id):
                    chat_participant_crud.create_from_dict(
                        self.db,
                        obj_in={"room_id": room.id, "user_id": uid, "role": ROLE_MEMBER},
                        commit=False,
                    )
                self.db.commit()
            except IntegrityError:
                # Another process created the pair first
                self.db.rollback()
                room = chat_room_crud.get_by_direct_key(self.db, direct_key=key)
                if room is None:
                    raise ServiceUnavailable(message="Failed to create room. Please try again.")
                return self.room_view(room, user_id), False
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to create direct room: %s", e)
                raise ServiceUnavailable(message="Failed to create room. Please try again.")
            self.db.refresh(room)
            logger.info("Direct room %s created for %s and %s", room.id, user_id, other_user_id)
            return self.room_view(room, user_id), True

    async def create_group_room(
        self, creator_id: uuid.UUID, name: str, member_ids: List[uuid.UUID]
    ) -> RoomResponse:
        """Creator becomes admin; member_ids join as members."""
        members = [uid for uid in dict.fromkeys(member_ids) if uid != creator_id]
        missing = user_crud.missing_ids(self.db, members)
        if missing:
            raise NotFound("User")
        try:
            room = chat_room_crud.create_from_dict(
                self.db,
                obj_in={"room_type": ROOM_TYPE_GROUP, "name": name, "created_by": creator_id},
                commit=False,
            )
            chat_participant_crud.create_from_dict(
                self.db,
                obj_in={"room_id": room.id, "user_id": creator_id, "role": ROLE_ADMIN},
                commit=False,
            )
            for uid in members:
                chat_participant_crud.create_from_dict(
                    self.db,
                    obj_in={"room_id": room.id, "user_id": uid, "role": ROLE_MEMBER},
                    commit=False,
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to create group room: %s", e)
            raise ServiceUnavailable(message="Failed to create room. Please try again.")
        self.db.refresh(room)
        logger.info("Group room %s created by %s with %d members", room.id, creator_id, len(members) + 1)

        view = self.room_view(room, creator_id)
        await self.hub.connections.send_to_users(
            members,
            "participant_joined",
            {"room": view.model_dump(mode="json", exclude={"unread_count", "role", "notifications_enabled"})},
            room_id=room.id,
        )
        return view

    def get_room(self, room_id: uuid.UUID, user_id: uuid.UUID) -> RoomResponse:
        room, part = self.require_member(room_id, user_id)
        return self.room_view(room, user_id, participant=part)

    def list_rooms(
        self,
        user_id: uuid.UUID,
        *,
        room_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[RoomResponse]:
        rooms, total = chat_room_crud.list_rooms_for_user(
            self.db, user_id=user_id, room_type=room_type, page=page, limit=limit
        )
        items = [self.room_view(room, user_id, with_preview=True) for room in rooms]
        return Page[RoomResponse].build(items, page=page, limit=limit, total=total)

    def list_participants(self, room_id: uuid.UUID, user_id: uuid.UUID) -> List[ParticipantResponse]:
        self.require_member(room_id, user_id)
        return [
            ParticipantResponse.from_model(p)
            for p in chat_participant_crud.list_active_by_room(self.db, room_id=room_id)
        ]

    def set_notifications(self, room_id: uuid.UUID, user_id: uuid.UUID, enabled: bool) -> RoomResponse:
        room, part = self.require_member(room_id, user_id)
        chat_participant_crud.update(self.db, db_obj=part, obj_in={"notifications_enabled": enabled})
        return self.room_view(room, user_id, participant=part)

    # --- Membership changes ---

    async def add_participant(
        self,
        room_id: uuid.UUID,
        actor_id: uuid.UUID,
        user_id: uuid.UUID,
        role: str = ROLE_MEMBER,
    ) -> ParticipantResponse:
        """Admin-only, group rooms only."""
        async with self.hub.room_locks.hold(room_id):
            room, actor = self.require_member(room_id, actor_id)
            self._require_group(room)
            if not actor.is_admin:
                raise NotRoomAdmin()
            if user_crud.missing_ids(self.db, [user_id]):
                raise NotFound("User")
            if self.is_member(room_id, user_id):
                raise Conflict(
                    message="User is already a participant of this room.",
                    code="ALREADY_PARTICIPANT",
                )
            try:
                part = chat_participant_crud.create_from_dict(
                    self.db,
                    obj_in={"room_id": room_id, "user_id": user_id, "role": role},
                )
            except IntegrityError:
                self.db.rollback()
                raise Conflict(
                    message="User is already a participant of this room.",
                    code="ALREADY_PARTICIPANT",
                )
            logger.info("User %s added to room %s by %s", user_id, room_id, actor_id)

            result = ParticipantResponse.from_model(part)
            audience = chat_participant_crud.list_active_user_ids(self.db, room_id=room_id)
            await self.hub.connections.send_to_users(
                audience,
                "participant_joined",
                {"participant": result.model_dump(mode="json"), "added_by": str(actor_id)},
                room_id=room_id,
            )
            return result

    async def remove_participant(
        self, room_id: uuid.UUID, actor_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        """Admins remove anyone; everyone may remove themselves. Group rooms only."""
        async with self.hub.room_locks.hold(room_id):
            room, actor = self.require_member(room_id, actor_id)
            self._require_group(room)
            if user_id != actor_id and not actor.is_admin:
                raise NotRoomAdmin()
            target = chat_participant_crud.get_active(self.db, room_id=room_id, user_id=user_id)
            if not target:
                raise NotFound("Participant")

            promoted: Optional[ChatParticipant] = None
            try:
                chat_participant_crud.update(
                    self.db, db_obj=target, obj_in={"left_at": utcnow()}, commit=False
                )
                if target.is_admin and chat_participant_crud.count_active_admins(self.db, room_id=room_id) == 0:
                    remaining = chat_participant_crud.list_active_by_room(self.db, room_id=room_id)
                    if remaining:
                        promoted = remaining[0]
                        promoted.role = ROLE_ADMIN
                        self.db.add(promoted)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Failed to remove participant: %s", e)
                raise ServiceUnavailable(message="Failed to update room. Please try again.")
            logger.info("User %s left room %s (by %s)", user_id, room_id, actor_id)

            audience = chat_participant_crud.list_active_user_ids(self.db, room_id=room_id)
            payload = {
                "user_id": str(user_id),
                "removed_by": str(actor_id),
                "promoted_admin_id": str(promoted.user_id) if promoted else None,
            }
            await self.hub.connections.send_to_users(
                audience + [user_id], "participant_left", payload, room_id=room_id
            )
            await self.hub.typing.stop(room_id, user_id)

    # --- Views ---

    def room_view(
        self,
        room: ChatRoom,
        user_id: uuid.UUID,
        *,
        participant: Optional[ChatParticipant] = None,
        with_preview: bool = False,
    ) -> RoomResponse:
        part = participant or chat_participant_crud.get_active(self.db, room_id=room.id, user_id=user_id)
        participants = [
            ParticipantResponse.from_model(p)
            for p in chat_participant_crud.list_active_by_room(self.db, room_id=room.id)
        ]
        preview = None
        if with_preview:
            preview = self._last_message_preview(room)
        return RoomResponse(
            id=room.id,
            room_type=room.room_type,
            name=room.name,
            created_by=room.created_by,
            last_message_id=room.last_message_id,
            last_message_at=as_utc(room.last_message_at),
            created_at=as_utc(room.created_at),
            unread_count=part.unread_count if part else 0,
            notifications_enabled=part.notifications_enabled if part else True,
            role=part.role if part else None,
            participants=participants,
            last_message_preview=preview,
        )

    def _last_message_preview(self, room: ChatRoom) -> Optional[LastMessagePreview]:
        last_msg = None
        if room.last_message_id:
            last_msg = chat_message_crud.get_by_id(self.db, message_id=room.last_message_id)
        if last_msg is None:
            last_msg = (
                self.db.query(ChatMessage)
                .filter(ChatMessage.room_id == room.id)
                .order_by(desc(ChatMessage.created_at))
                .first()
            )
        if last_msg is None:
            return None
        content = None
        if not last_msg.is_deleted:
            content = last_msg.content[:PREVIEW_LENGTH] + ("..." if len(last_msg.content) > PREVIEW_LENGTH else "")
        return LastMessagePreview(
            id=last_msg.id,
            content=content,
            sender_id=last_msg.sender_id,
            is_deleted=bool(last_msg.is_deleted),
            created_at=as_utc(last_msg.created_at),
        )

    @staticmethod
    def _require_group(room: ChatRoom) -> None:
        if room.is_direct:
            raise BadRequest(
                message="Direct rooms have a fixed pair of participants.",
                code="DIRECT_ROOM_IMMUTABLE",
            )
