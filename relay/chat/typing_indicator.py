"""
Typing indicators: ephemeral, never persisted, self-expiring.
"""
import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, Iterable, Tuple

from relay.chat.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

AudienceFn = Callable[[uuid.UUID], Awaitable[Iterable[uuid.UUID]]]


class TypingIndicator:
    """
    One cancellable timer per (room, user).

    ``start`` broadcasts ``typing: true`` the first time and re-arms the timer
    on every call. The timer firing, or ``stop``, broadcasts ``typing: false``.
    """

    def __init__(self, manager: ConnectionManager, audience: AudienceFn, timeout: float = 3.0) -> None:
        self._manager = manager
        self._audience = audience
        self.timeout = timeout
        self._timers: Dict[Tuple[uuid.UUID, uuid.UUID], asyncio.Task] = {}

    def is_typing(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return (room_id, user_id) in self._timers

    async def start(self, room_id: uuid.UUID, user_id: uuid.UUID) -> None:
        key = (room_id, user_id)
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        self._timers[key] = asyncio.create_task(self._expire(key))
        if existing is None:
            await self._broadcast(room_id, user_id, True)

    async def stop(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Returns False when the user was not typing."""
        task = self._timers.pop((room_id, user_id), None)
        if task is None:
            return False
        task.cancel()
        await self._broadcast(room_id, user_id, False)
        return True

    async def clear_user(self, user_id: uuid.UUID) -> None:
        """Stop every indicator of a user (last connection closed)."""
        for room_id, uid in [k for k in self._timers if k[1] == user_id]:
            await self.stop(room_id, uid)

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

    async def _expire(self, key: Tuple[uuid.UUID, uuid.UUID]) -> None:
        await asyncio.sleep(self.timeout)
        if self._timers.get(key) is not asyncio.current_task():
            return
        del self._timers[key]
        room_id, user_id = key
        logger.debug("Typing expired for user %s in room %s", user_id, room_id)
        try:
            await self._broadcast(room_id, user_id, False)
        except Exception as e:
            logger.error("Failed to broadcast typing expiry for %s in room %s: %s", user_id, room_id, e)

    async def _broadcast(self, room_id: uuid.UUID, user_id: uuid.UUID, typing: bool) -> None:
        audience = [uid for uid in await self._audience(room_id) if uid != user_id]
        await self._manager.send_to_users(
            audience,
            "user_typing",
            {"user_id": str(user_id), "typing": typing},
            room_id=room_id,
        )
