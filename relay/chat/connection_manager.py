"""
In-memory connection manager for chat WebSocket: tracks live sockets per user and
delivers events to sets of users.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def encode_event(event: str, payload: Any, room_id: Optional[uuid.UUID] = None) -> str:
    return json.dumps({
        "event": event,
        "room_id": str(room_id) if room_id else None,
        "payload": payload,
    }, default=str)


class ConnectionManager:
    """Tracks WebSocket connections per user and fans events out to them."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        # user_id -> set of WebSocket
        self._users: Dict[uuid.UUID, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self.send_timeout = send_timeout

    async def connect(self, websocket: WebSocket, user_id: uuid.UUID) -> int:
        """Register a socket. Returns the user's connection count."""
        async with self._lock:
            self._users.setdefault(user_id, set()).add(websocket)
            count = len(self._users[user_id])
        logger.debug("User %s connected (%d sockets)", user_id, count)
        return count

    async def disconnect(self, websocket: WebSocket, user_id: uuid.UUID) -> int:
        """Forget a socket. Returns the user's remaining connection count."""
        async with self._lock:
            sockets = self._users.get(user_id)
            if sockets is None:
                return 0
            sockets.discard(websocket)
            if not sockets:
                del self._users[user_id]
                return 0
            count = len(sockets)
        logger.debug("User %s disconnected (%d sockets left)", user_id, count)
        return count

    def is_connected(self, user_id: uuid.UUID) -> bool:
        return bool(self._users.get(user_id))

    def connected_user_ids(self) -> Set[uuid.UUID]:
        return set(self._users)

    async def send_json(self, websocket: WebSocket, data: Dict[str, Any]) -> bool:
        """Send one frame to one socket. Returns False if the socket is unusable."""
        try:
            await asyncio.wait_for(
                websocket.send_text(json.dumps(data, default=str)),
                timeout=self.send_timeout,
            )
            return True
        except Exception as e:
            logger.warning("Direct send failed: %s", e)
            return False

    async def send_to_users(
        self,
        user_ids: Iterable[uuid.UUID],
        event: str,
        payload: Any,
        room_id: Optional[uuid.UUID] = None,
        exclude_websocket: Optional[WebSocket] = None,
    ) -> int:
        """
        Send one event to every live socket of the given users (except
        exclude_websocket). Sockets that fail or exceed send_timeout are
        dropped. Returns the number of sockets reached.
        """
        msg = encode_event(event, payload, room_id)
        targets: List[tuple] = []
        async with self._lock:
            for uid in set(user_ids):
                for ws in self._users.get(uid, ()):
                    if ws is not exclude_websocket:
                        targets.append((uid, ws))
        if not targets:
            return 0

        results = await asyncio.gather(
            *(asyncio.wait_for(ws.send_text(msg), timeout=self.send_timeout) for _, ws in targets),
            return_exceptions=True,
        )
        dead = []
        for (uid, ws), result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Send of %s to user %s failed: %r", event, uid, result)
                dead.append((uid, ws))
        if dead:
            async with self._lock:
                for uid, ws in dead:
                    sockets = self._users.get(uid)
                    if sockets is None:
                        continue
                    sockets.discard(ws)
                    if not sockets:
                        del self._users[uid]
        return len(targets) - len(dead)
