"""
Chat schemas: rooms, participants and messages.
"""
from datetime import datetime
from typing import List, Literal, Optional
import uuid
from pydantic import BaseModel, Field, field_validator

from relay.core.config import settings
from relay.model.chat_message import ChatMessage
from relay.model.chat_participant import ChatParticipant
from relay.utils.time import as_utc

MessageType = Literal["text", "image", "file", "system"]
RoleType = Literal["admin", "member"]


# --- Participants ---


class ParticipantResponse(BaseModel):
    """Active member of a room."""
    user_id: uuid.UUID
    role: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    joined_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, participant: ChatParticipant) -> "ParticipantResponse":
        user = participant.user
        return cls(
            user_id=participant.user_id,
            role=participant.role,
            display_name=user.display_name if user else None,
            email=user.email if user else None,
            joined_at=as_utc(participant.joined_at),
            last_read_at=as_utc(participant.last_read_at),
        )


class ParticipantAddBody(BaseModel):
    """Body for POST /chat/rooms/{room_id}/participants."""
    user_id: uuid.UUID
    role: RoleType = "member"


class NotificationSettingsBody(BaseModel):
    """Body for PUT /chat/rooms/{room_id}/notifications."""
    enabled: bool


# --- Room ---


class DirectRoomCreateBody(BaseModel):
    """Body for POST /chat/rooms/direct (create or get)."""
    other_user_id: uuid.UUID


class GroupRoomCreateBody(BaseModel):
    """Body for POST /chat/rooms/group."""
    name: str = Field(..., min_length=1, max_length=120)
    member_ids: List[uuid.UUID] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v


class LastMessagePreview(BaseModel):
    """Last message snippet for room list."""
    id: uuid.UUID
    content: Optional[str] = None
    sender_id: uuid.UUID
    is_deleted: bool = False
    created_at: datetime


class RoomResponse(BaseModel):
    """Room as seen by one participant."""
    id: uuid.UUID
    room_type: str
    name: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    last_message_id: Optional[uuid.UUID] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    unread_count: int = 0
    notifications_enabled: bool = True
    role: Optional[str] = None
    participants: List[ParticipantResponse] = Field(default_factory=list)
    last_message_preview: Optional[LastMessagePreview] = None


# --- Message ---


class MessageCreateBody(BaseModel):
    """Body for POST /chat/rooms/{room_id}/messages."""
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)
    message_type: MessageType = "text"
    reply_to_id: Optional[uuid.UUID] = None


class MessageEditBody(BaseModel):
    """Body for PATCH /chat/messages/{message_id}."""
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)


class MessageResponse(BaseModel):
    """Single message. Deleted messages keep their place with content hidden."""
    id: uuid.UUID
    room_id: uuid.UUID
    sender_id: uuid.UUID
    content: Optional[str] = None
    message_type: str
    reply_to_id: Optional[uuid.UUID] = None
    is_edited: bool = False
    is_deleted: bool = False
    edited_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_model(cls, msg: ChatMessage) -> "MessageResponse":
        return cls(
            id=msg.id,
            room_id=msg.room_id,
            sender_id=msg.sender_id,
            content=None if msg.is_deleted else msg.content,
            message_type=msg.message_type,
            reply_to_id=msg.reply_to_id,
            is_edited=bool(msg.is_edited),
            is_deleted=bool(msg.is_deleted),
            edited_at=as_utc(msg.edited_at),
            deleted_at=as_utc(msg.deleted_at),
            created_at=as_utc(msg.created_at),
        )


class ReadReceipt(BaseModel):
    """Result of marking a room read."""
    room_id: uuid.UUID
    user_id: uuid.UUID
    last_read_at: datetime
