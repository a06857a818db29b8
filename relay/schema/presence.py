"""
Presence schemas.
"""
from datetime import datetime
from typing import Literal, Optional
import uuid
from pydantic import BaseModel

from relay.model.presence import UserPresence
from relay.utils.time import as_utc


class PresenceResponse(BaseModel):
    user_id: uuid.UUID
    status: str
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: UserPresence) -> "PresenceResponse":
        return cls(user_id=row.user_id, status=row.status, last_seen_at=as_utc(row.last_seen_at))


class PresenceUpdateBody(BaseModel):
    """Body for PUT /presence/me. Offline is only reached by disconnecting."""
    status: Literal["online", "away"]
