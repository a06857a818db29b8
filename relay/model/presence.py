"""
Presence model. One row per user, last write wins by updated_at.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from relay.core.database import Base

STATUS_ONLINE = "online"
STATUS_AWAY = "away"
STATUS_OFFLINE = "offline"
STATUSES = (STATUS_ONLINE, STATUS_AWAY, STATUS_OFFLINE)


class UserPresence(Base):
    __tablename__ = "user_presence"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    status = Column(String, nullable=False, default=STATUS_OFFLINE)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
