"""
Process-wide realtime state shared by the REST and WebSocket layers.
"""
import logging
import uuid
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from relay.chat.connection_manager import ConnectionManager
from relay.chat.presence_tracker import PresenceTracker
from relay.chat.room_locks import RoomLocks
from relay.chat.typing_indicator import TypingIndicator
from relay.core.config import settings
from relay.core.database import SessionLocal
from relay.crud import chat_participant_crud

logger = logging.getLogger(__name__)


class ChatHub:
    """Connections, room locks, typing timers and presence for one process."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        typing_timeout: Optional[float] = None,
        offline_grace: Optional[float] = None,
        send_timeout: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory or SessionLocal
        self.connections = ConnectionManager(
            send_timeout=send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT_SECONDS,
        )
        self.room_locks = RoomLocks()
        self.typing = TypingIndicator(
            self.connections,
            self.room_audience,
            timeout=typing_timeout if typing_timeout is not None else settings.TYPING_TIMEOUT_SECONDS,
        )
        self.presence = PresenceTracker(
            self.connections,
            self.session_factory,
            grace_seconds=offline_grace if offline_grace is not None else settings.PRESENCE_OFFLINE_GRACE_SECONDS,
        )

    async def room_audience(self, room_id: uuid.UUID) -> List[uuid.UUID]:
        """Current active participants of a room."""
        db = self.session_factory()
        try:
            return chat_participant_crud.list_active_user_ids(db, room_id=room_id)
        finally:
            db.close()

    async def shutdown(self) -> None:
        await self.typing.shutdown()
        await self.presence.shutdown()
        logger.info("Chat hub stopped")


chat_hub = ChatHub()
