"""
Chat API: rooms, participants and messages (REST).
"""
import logging
import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from relay.chat.hub import ChatHub
from relay.core.config import settings
from relay.core.database import get_db
from relay.core.dependencies import get_chat_hub, get_current_user_id
from relay.schema.chat import (
    DirectRoomCreateBody,
    GroupRoomCreateBody,
    MessageCreateBody,
    MessageEditBody,
    MessageResponse,
    NotificationSettingsBody,
    ParticipantAddBody,
    ParticipantResponse,
    ReadReceipt,
    RoomResponse,
)
from relay.schema.common import Envelope, Page
from relay.service.message_router import MessageRouter
from relay.service.room_registry import RoomRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


# --- REST: Rooms ---

@router.get("/rooms", response_model=Envelope[Page[RoomResponse]])
async def list_rooms(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    room_type: Optional[Literal["direct", "group"]] = None,
):
    """List rooms the current user participates in, most recent activity first."""
    rooms = RoomRegistry(db, hub).list_rooms(user_id, room_type=room_type, page=page, limit=limit)
    return Envelope(data=rooms)


@router.post("/rooms/direct", response_model=Envelope[RoomResponse])
async def create_or_get_direct_room(
    body: DirectRoomCreateBody,
    response: Response,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Create or get the direct room with other_user_id. 201 when created, 200 when it existed."""
    room, created = await RoomRegistry(db, hub).get_or_create_direct_room(user_id, body.other_user_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return Envelope(data=room, message="Room created" if created else None)


@router.post("/rooms/group", response_model=Envelope[RoomResponse], status_code=status.HTTP_201_CREATED)
async def create_group_room(
    body: GroupRoomCreateBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Create a group room; the caller becomes its admin."""
    room = await RoomRegistry(db, hub).create_group_room(user_id, body.name, body.member_ids)
    return Envelope(data=room, message="Room created")


@router.get("/rooms/{room_id}", response_model=Envelope[RoomResponse])
async def get_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Get one room (only if current user is participant)."""
    return Envelope(data=RoomRegistry(db, hub).get_room(room_id, user_id))


@router.get("/rooms/{room_id}/participants", response_model=Envelope[List[ParticipantResponse]])
async def list_participants(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    return Envelope(data=RoomRegistry(db, hub).list_participants(room_id, user_id))


@router.post(
    "/rooms/{room_id}/participants",
    response_model=Envelope[ParticipantResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_participant(
    room_id: uuid.UUID,
    body: ParticipantAddBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Add a user to a group room (admins only)."""
    part = await RoomRegistry(db, hub).add_participant(room_id, user_id, body.user_id, role=body.role)
    return Envelope(data=part, message="Participant added")


@router.delete("/rooms/{room_id}/participants/{participant_user_id}", response_model=Envelope[None])
async def remove_participant(
    room_id: uuid.UUID,
    participant_user_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Remove a participant (admins) or leave the room (yourself)."""
    await RoomRegistry(db, hub).remove_participant(room_id, user_id, participant_user_id)
    return Envelope(message="Participant removed")


@router.put("/rooms/{room_id}/notifications", response_model=Envelope[RoomResponse])
async def set_notifications(
    room_id: uuid.UUID,
    body: NotificationSettingsBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Mute or unmute a room for the current user."""
    return Envelope(data=RoomRegistry(db, hub).set_notifications(room_id, user_id, body.enabled))


# --- REST: Messages ---

@router.get("/rooms/{room_id}/messages", response_model=Envelope[Page[MessageResponse]])
async def list_messages(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    before_id: Optional[uuid.UUID] = None,
):
    """Paginated messages for a room, newest first. Deleted messages appear as tombstones."""
    messages = MessageRouter(db, hub).list_messages(
        room_id, user_id, page=page, limit=limit, before_id=before_id
    )
    return Envelope(data=messages)


@router.post(
    "/rooms/{room_id}/messages",
    response_model=Envelope[MessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_message(
    room_id: uuid.UUID,
    body: MessageCreateBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Send a message. Persisted first, then delivered to connected participants."""
    msg = await MessageRouter(db, hub).send(
        room_id,
        user_id,
        body.content,
        message_type=body.message_type,
        reply_to_id=body.reply_to_id,
    )
    return Envelope(data=msg)


@router.patch("/messages/{message_id}", response_model=Envelope[MessageResponse])
async def edit_message(
    message_id: uuid.UUID,
    body: MessageEditBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Edit own message."""
    return Envelope(data=await MessageRouter(db, hub).edit(message_id, user_id, body.content))


@router.delete("/messages/{message_id}", response_model=Envelope[MessageResponse])
async def delete_message(
    message_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Delete own message. The message stays in history as a tombstone."""
    return Envelope(data=await MessageRouter(db, hub).delete(message_id, user_id))


@router.post("/rooms/{room_id}/read", response_model=Envelope[ReadReceipt])
async def mark_room_read(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Reset unread count and broadcast the read receipt."""
    return Envelope(data=await MessageRouter(db, hub).mark_read(room_id, user_id))
