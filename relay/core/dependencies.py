"""
FastAPI dependencies for route protection and shared chat state.
"""
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from relay.chat.hub import ChatHub, chat_hub
from relay.core.exceptions import NotAuthenticated, SessionExpired
from relay.session import get_session

# Security scheme for OpenAPI docs (shows lock icon and Authorization header)
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Session token issued by the auth service",
    auto_error=False,
)


async def validate_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """
    Validates session loaded by middleware.

    Returns:
        User data dict with user_id, email, is_active

    Raises:
        NotAuthenticated: No token provided
        SessionExpired: Token not found in Redis
    """
    if not request.state.token:
        raise NotAuthenticated()

    if not request.state.session:
        raise SessionExpired()

    return request.state.session


def get_current_user_id(
    current_user: Dict[str, Any] = Depends(validate_session),
) -> uuid.UUID:
    """User id of the authenticated session."""
    try:
        return uuid.UUID(str(current_user["user_id"]))
    except (KeyError, ValueError):
        raise SessionExpired()


def authenticate_websocket(token: Optional[str] = None) -> Optional[uuid.UUID]:
    """Resolve ?token= on the WebSocket URL to a user id, or None."""
    if not token:
        return None
    session = get_session(token)
    if not session or not session.get("user_id"):
        return None
    try:
        return uuid.UUID(str(session["user_id"]))
    except ValueError:
        return None


def get_chat_hub() -> ChatHub:
    """Process-wide realtime state (connections, locks, typing, presence)."""
    return chat_hub
