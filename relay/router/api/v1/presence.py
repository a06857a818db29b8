"""
Presence API: read statuses, set own status (online/away).
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from relay.chat.hub import ChatHub
from relay.core.database import get_db
from relay.core.dependencies import get_chat_hub, get_current_user_id
from relay.core.exceptions import BadRequest
from relay.schema.common import Envelope
from relay.schema.presence import PresenceResponse, PresenceUpdateBody

router = APIRouter()

MAX_PRESENCE_LOOKUP = 100


@router.get("", response_model=Envelope[List[PresenceResponse]])
async def get_presence(
    user_ids: str = Query(..., description="Comma-separated user ids (max 100)."),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Presence for a list of users. Users never seen read as offline."""
    try:
        ids = [uuid.UUID(part.strip()) for part in user_ids.split(",") if part.strip()]
    except ValueError:
        raise BadRequest(message="user_ids must be comma-separated UUIDs.", code="INVALID_USER_IDS")
    if not ids or len(ids) > MAX_PRESENCE_LOOKUP:
        raise BadRequest(
            message=f"Provide between 1 and {MAX_PRESENCE_LOOKUP} user ids.",
            code="INVALID_USER_IDS",
        )
    return Envelope(data=hub.presence.get_presence(db, ids))


@router.put("/me", response_model=Envelope[PresenceResponse])
async def set_my_presence(
    body: PresenceUpdateBody,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Set own status while connected. Returns the stored presence."""
    await hub.presence.set_status(user_id, body.status)
    return Envelope(data=hub.presence.get_presence(db, [user_id])[0])
