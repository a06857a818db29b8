"""
Application exceptions.

Every rejected operation raises an AppException subclass. The HTTP layer turns
it into the error envelope; the WebSocket loop turns it into an ``error``
event and keeps the connection open.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base for errors reported to the client."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"
    message: str = "Bad request."

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "data": None,
            "message": self.message,
            "code": self.code,
        }


# --- 401 ---

class NotAuthenticated(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "NOT_AUTHENTICATED"
    message = "Authentication required."


class SessionExpired(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "SESSION_EXPIRED"
    message = "Session expired or invalid. Please log in again."


# --- 403 ---

class Forbidden(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "You are not allowed to perform this operation."


class NotParticipant(Forbidden):
    code = "NOT_PARTICIPANT"
    message = "You are not a participant of this room."


class NotRoomAdmin(Forbidden):
    code = "NOT_ROOM_ADMIN"
    message = "Only room admins can change room membership."


class NotMessageSender(Forbidden):
    code = "NOT_MESSAGE_SENDER"
    message = "Only the original sender can modify this message."


# --- 404 ---

class NotFound(AppException):
    """Raised as NotFound("Room") -> code ROOM_NOT_FOUND, message "Room not found."."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            message=f"{resource} not found.",
            code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
        )


# --- 400 / 409 / 503 ---

class BadRequest(AppException):
    pass


class Conflict(AppException):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Operation conflicts with the current state."


class ServiceUnavailable(AppException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_ERROR"
    message = "Service temporarily unavailable. Please try again."


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "data": jsonable_encoder(exc.errors()),
            "message": "Request validation failed.",
            "code": "VALIDATION_ERROR",
        },
    )
