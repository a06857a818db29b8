"""
Chat WebSocket: one connection per device carries every realtime action and event.

Client frames are JSON objects with an ``action`` and an optional
``request_id`` echoed back in the ``ack`` or ``error`` reply. Rejected
actions never close the socket.
"""
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.chat.hub import ChatHub
from relay.core.dependencies import authenticate_websocket, get_chat_hub
from relay.core.exceptions import AppException, BadRequest, ServiceUnavailable
from relay.schema.chat import MessageCreateBody, MessageEditBody
from relay.schema.presence import PresenceUpdateBody
from relay.service.message_router import MessageRouter
from relay.service.room_registry import RoomRegistry

router = APIRouter()
logger = logging.getLogger(__name__)

WS_UNAUTHORIZED = 4001

Handler = Callable[[Session, ChatHub, uuid.UUID, Dict[str, Any]], Awaitable[Any]]


def _uuid_field(obj: Dict[str, Any], field: str) -> uuid.UUID:
    value = obj.get(field)
    if not value:
        raise BadRequest(message=f"Missing required field: {field}.", code=f"MISSING_{field.upper()}")
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise BadRequest(message=f"{field} must be a valid UUID.", code=f"INVALID_{field.upper()}")


def _dump(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


async def _join(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    """Validate membership and return the room snapshot."""
    return RoomRegistry(db, hub).get_room(_uuid_field(obj, "room_id"), user_id)


async def _leave(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    room_id = _uuid_field(obj, "room_id")
    await RoomRegistry(db, hub).remove_participant(room_id, user_id, user_id)
    return {"room_id": str(room_id)}


async def _send(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    room_id = _uuid_field(obj, "room_id")
    body = MessageCreateBody.model_validate(obj)
    return await MessageRouter(db, hub).send(
        room_id,
        user_id,
        body.content,
        message_type=body.message_type,
        reply_to_id=body.reply_to_id,
    )


async def _edit(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    message_id = _uuid_field(obj, "message_id")
    body = MessageEditBody.model_validate(obj)
    return await MessageRouter(db, hub).edit(message_id, user_id, body.content)


async def _delete(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    return await MessageRouter(db, hub).delete(_uuid_field(obj, "message_id"), user_id)


async def _read(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    return await MessageRouter(db, hub).mark_read(_uuid_field(obj, "room_id"), user_id)


async def _typing(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    room_id = _uuid_field(obj, "room_id")
    RoomRegistry(db, hub).require_member(room_id, user_id)
    typing = bool(obj.get("typing", True))
    if typing:
        await hub.typing.start(room_id, user_id)
    else:
        await hub.typing.stop(room_id, user_id)
    return {"room_id": str(room_id), "typing": typing}


async def _presence(db: Session, hub: ChatHub, user_id: uuid.UUID, obj: Dict[str, Any]) -> Any:
    body = PresenceUpdateBody.model_validate(obj)
    await hub.presence.set_status(user_id, body.status)
    return hub.presence.get_presence(db, [user_id])[0]


ACTIONS: Dict[str, Handler] = {
    "join": _join,
    "leave": _leave,
    "send": _send,
    "edit": _edit,
    "delete": _delete,
    "read": _read,
    "typing": _typing,
    "presence": _presence,
}


@router.websocket("/ws")
async def websocket_chat(
    websocket: WebSocket,
    user_id: Optional[uuid.UUID] = Depends(authenticate_websocket),
    hub: ChatHub = Depends(get_chat_hub),
):
    """Realtime chat channel. Auth via query ?token=."""
    await websocket.accept()
    if not user_id:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    async def send_error(code: str, message: str, request_id: Any = None) -> None:
        await hub.connections.send_json(
            websocket,
            {"event": "error", "code": code, "message": message, "request_id": request_id},
        )

    try:
        await hub.connections.connect(websocket, user_id)
        await hub.presence.connect(user_id)
        while True:
            data = await websocket.receive_text()
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                await send_error("INVALID_JSON", "Request body must be valid JSON.")
                continue
            if not isinstance(obj, dict):
                await send_error("INVALID_FRAME", "Request body must be a JSON object.")
                continue
            request_id = obj.get("request_id")
            action = obj.get("action")
            handler = ACTIONS.get(action) if isinstance(action, str) else None
            if handler is None:
                await send_error(
                    "UNKNOWN_ACTION",
                    f"Expected action: {', '.join(ACTIONS)}.",
                    request_id,
                )
                continue

            db = hub.session_factory()
            try:
                result = await handler(db, hub, user_id, obj)
            except AppException as e:
                logger.debug("Action %s rejected for %s: %s", action, user_id, e.code)
                await send_error(e.code, e.message, request_id)
                continue
            except ValidationError as e:
                await send_error("VALIDATION_ERROR", str(e.errors()[0].get("msg", "Invalid frame.")), request_id)
                continue
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception("Action %s failed for %s: %s", action, user_id, e)
                unavailable = ServiceUnavailable()
                await send_error(unavailable.code, unavailable.message, request_id)
                continue
            finally:
                db.close()
            await hub.connections.send_json(
                websocket,
                {"event": "ack", "action": action, "request_id": request_id, "data": _dump(result)},
            )
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected for user %s", user_id)
    except Exception as e:
        logger.warning("WebSocket closed: %s", e)
    finally:
        remaining = await hub.connections.disconnect(websocket, user_id)
        if remaining == 0:
            await hub.typing.clear_user(user_id)
        await hub.presence.disconnect(user_id)
