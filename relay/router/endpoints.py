"""
API Router - all endpoints.
"""
from fastapi import APIRouter
from relay.router.api.v1 import chat, presence, ws

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    chat.router,
    prefix="/chat",
    tags=["Chat"],
)

api_router.include_router(
    ws.router,
    prefix="/chat",
    tags=["Chat"],
)

api_router.include_router(
    presence.router,
    prefix="/presence",
    tags=["Presence"],
)
