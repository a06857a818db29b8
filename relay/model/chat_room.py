"""
Chat room model. One conversation, direct (2 users) or group.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from relay.core.database import Base

ROOM_TYPE_DIRECT = "direct"
ROOM_TYPE_GROUP = "group"
ROOM_TYPES = (ROOM_TYPE_DIRECT, ROOM_TYPE_GROUP)


def direct_key_for(user_a: uuid.UUID, user_b: uuid.UUID) -> str:
    """Order-independent key of a user pair."""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_type = Column(String, nullable=False, default=ROOM_TYPE_DIRECT)
    name = Column(String, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Only set on direct rooms; unique so a pair never gets two rooms
    direct_key = Column(String, nullable=True, unique=True)
    last_message_id = Column(UUID(as_uuid=True), ForeignKey("chat_messages.id", ondelete="SET NULL", use_alter=True), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship("ChatParticipant", back_populates="room", cascade="all, delete-orphan")
    messages = relationship("ChatMessage", back_populates="room", cascade="all, delete-orphan", foreign_keys="ChatMessage.room_id")

    @property
    def is_direct(self) -> bool:
        return self.room_type == ROOM_TYPE_DIRECT
