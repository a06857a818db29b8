import json
import uuid
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

import relay.model  # noqa: F401
from relay.chat.hub import ChatHub
from relay.core.database import Base, get_db
from relay.core.dependencies import authenticate_websocket, get_chat_hub
from relay.model import User


class FakeWebSocket:
    """Records frames sent by the connection manager."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    def events(self, name: Optional[str] = None):
        return [f for f in self.sent if name is None or f.get("event") == name]


class ScriptedWebSocket(FakeWebSocket):
    """Plays back client frames, then disconnects."""

    def __init__(self, frames):
        super().__init__()
        self._frames = list(frames)
        self.close_code = None

    async def accept(self) -> None:
        pass

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    async def receive_text(self) -> str:
        if not self._frames:
            raise WebSocketDisconnect(code=1000)
        frame = self._frames.pop(0)
        return frame if isinstance(frame, str) else json.dumps(frame)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def hub(session_factory):
    return ChatHub(
        session_factory=session_factory,
        typing_timeout=0.05,
        offline_grace=0.05,
        send_timeout=1.0,
    )


@pytest.fixture
def make_user(db):
    def _make(display_name: Optional[str] = None, is_active: bool = True) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            display_name=display_name,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def carol(make_user):
    return make_user("Carol")


@pytest.fixture
def sessions():
    """token -> session data, standing in for the Redis session store."""
    return {}


@pytest.fixture
def login(sessions):
    def _login(user: User) -> dict:
        token = f"token-{user.id}"
        sessions[token] = {"user_id": str(user.id), "email": user.email, "is_active": True}
        return {"Authorization": f"Bearer {token}"}
    return _login


@pytest.fixture
def ws_token(login):
    def _token(user: User) -> str:
        login(user)
        return f"token-{user.id}"
    return _token


@pytest.fixture
def client(session_factory, hub, sessions, monkeypatch):
    from main import create_app

    app = create_app(lifespan_context=None)

    monkeypatch.setattr("relay.core.middleware.get_session", lambda token: sessions.get(token))

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_ws_auth(token: Optional[str] = None) -> Optional[uuid.UUID]:
        data = sessions.get(token) if token else None
        return uuid.UUID(data["user_id"]) if data else None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chat_hub] = lambda: hub
    app.dependency_overrides[authenticate_websocket] = override_ws_auth
    with TestClient(app) as test_client:
        yield test_client
