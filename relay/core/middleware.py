"""
Session Middleware - loads session from Redis for each request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable
from relay.session import extract_token, get_session


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads session from Redis based on Authorization header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.session = {}
        request.state.token = None

        auth_header = request.headers.get("authorization")
        token = extract_token(auth_header)

        if token:
            # Token is kept even when the session is gone so the dependency
            # can tell "missing" from "expired".
            request.state.token = token
            user_data = get_session(token)
            if user_data:
                request.state.session = user_data

        response = await call_next(request)
        return response
