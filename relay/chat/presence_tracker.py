"""
Presence tracker: online/away/offline per user.

Status follows WebSocket connection lifecycle. When a user's last socket
closes, the offline transition waits for a grace period; a reconnect inside
that window cancels it, so flaky networks don't flap status for everyone.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from relay.chat.connection_manager import ConnectionManager
from relay.core.exceptions import BadRequest
from relay.crud import chat_participant_crud, presence_crud
from relay.model.presence import STATUS_AWAY, STATUS_OFFLINE, STATUS_ONLINE
from relay.schema.presence import PresenceResponse
from relay.utils.time import utcnow

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Tracks live connection counts and publishes status transitions."""

    def __init__(
        self,
        manager: ConnectionManager,
        session_factory: Callable[[], Session],
        grace_seconds: float = 5.0,
    ) -> None:
        self._manager = manager
        self._session_factory = session_factory
        self.grace_seconds = grace_seconds
        self._connections: Dict[uuid.UUID, int] = {}
        self._pending_offline: Dict[uuid.UUID, asyncio.Task] = {}

    def connection_count(self, user_id: uuid.UUID) -> int:
        return self._connections.get(user_id, 0)

    def has_pending_offline(self, user_id: uuid.UUID) -> bool:
        return user_id in self._pending_offline

    async def connect(self, user_id: uuid.UUID) -> Optional[PresenceResponse]:
        """
        Count a new connection. Returns the broadcast update, or None when
        nothing changed (already online, or a reconnect inside the grace window).
        """
        self._connections[user_id] = self._connections.get(user_id, 0) + 1
        pending = self._pending_offline.pop(user_id, None)
        if pending is not None:
            pending.cancel()
            logger.debug("User %s reconnected within grace period", user_id)
            return None
        if self._connections[user_id] > 1:
            return None
        return await self._transition(user_id, STATUS_ONLINE)

    async def disconnect(self, user_id: uuid.UUID) -> None:
        """Count a closed connection; schedule offline after the last one."""
        count = self._connections.get(user_id, 0) - 1
        if count > 0:
            self._connections[user_id] = count
            return
        self._connections.pop(user_id, None)
        seen_at = utcnow()
        previous = self._pending_offline.pop(user_id, None)
        if previous is not None:
            previous.cancel()
        self._pending_offline[user_id] = asyncio.create_task(
            self._go_offline(user_id, seen_at)
        )

    async def set_status(self, user_id: uuid.UUID, status: str) -> Optional[PresenceResponse]:
        """Explicit status from a connected client (online or away)."""
        if status not in (STATUS_ONLINE, STATUS_AWAY):
            raise BadRequest(
                message="Status must be 'online' or 'away'.",
                code="INVALID_STATUS",
            )
        if not self.connection_count(user_id):
            raise BadRequest(
                message="Open a realtime connection before setting presence.",
                code="NOT_CONNECTED",
            )
        return await self._transition(user_id, status)

    def get_presence(self, db: Session, user_ids: Iterable[uuid.UUID]) -> List[PresenceResponse]:
        """Stored presence for user_ids; users without a row read as offline."""
        wanted = list(dict.fromkeys(user_ids))
        rows = {r.user_id: r for r in presence_crud.list_for_users(db, user_ids=wanted)}
        result = []
        for uid in wanted:
            row = rows.get(uid)
            if row is None:
                result.append(PresenceResponse(user_id=uid, status=STATUS_OFFLINE))
            else:
                result.append(PresenceResponse.from_model(row))
        return result

    async def shutdown(self) -> None:
        pending = list(self._pending_offline.values())
        self._pending_offline.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _go_offline(self, user_id: uuid.UUID, seen_at: datetime) -> None:
        await asyncio.sleep(self.grace_seconds)
        if self._pending_offline.get(user_id) is not asyncio.current_task():
            return
        del self._pending_offline[user_id]
        try:
            await self._transition(user_id, STATUS_OFFLINE, last_seen_at=seen_at)
        except Exception as e:
            logger.error("Failed to mark user %s offline: %s", user_id, e)

    async def _transition(
        self,
        user_id: uuid.UUID,
        status: str,
        last_seen_at: Optional[datetime] = None,
    ) -> Optional[PresenceResponse]:
        now = utcnow()
        db = self._session_factory()
        try:
            current = presence_crud.get_for_user(db, user_id=user_id)
            if current is not None and current.status == status:
                return None
            row = presence_crud.upsert_if_newer(
                db,
                user_id=user_id,
                status=status,
                at=now,
                last_seen_at=last_seen_at or now,
            )
            if row is None:
                logger.debug("Stale presence write for user %s ignored", user_id)
                return None
            update = PresenceResponse.from_model(row)
            room_ids = chat_participant_crud.list_active_room_ids_for_user(db, user_id=user_id)
            audiences = {
                rid: [
                    uid for uid in chat_participant_crud.list_active_user_ids(db, room_id=rid)
                    if uid != user_id
                ]
                for rid in room_ids
            }
        finally:
            db.close()

        logger.info("User %s is now %s", user_id, status)
        payload = update.model_dump(mode="json")
        for room_id, audience in audiences.items():
            await self._manager.send_to_users(audience, "presence_updated", payload, room_id=room_id)
        return update
