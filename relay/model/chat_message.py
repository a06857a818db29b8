"""
Chat message model. One message in a room.
Edits and deletes update flags in place; rows are never removed.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Boolean, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from relay.core.database import Base

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPES = ("text", "image", "file", "system")


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_room_created", "room_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_id = Column(UUID(as_uuid=True), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default=MESSAGE_TYPE_TEXT)
    reply_to_id = Column(UUID(as_uuid=True), ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True, index=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    # Set by the application (microsecond precision) so ordering is stable
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    room = relationship("ChatRoom", back_populates="messages", foreign_keys=[room_id])
    sender = relationship("User", backref="chat_messages")
    reply_to = relationship("ChatMessage", remote_side="ChatMessage.id")
