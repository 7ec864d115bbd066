from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta
from typing import Any

# Keep the import-time app off the on-disk database and log file.
os.environ.setdefault("CHAT_DATABASE_URL", "sqlite://")
os.environ.setdefault("CHAT_LOG_FILE", os.path.join(tempfile.gettempdir(), "realtime_chat_tests.log"))
os.environ.setdefault("CORS_ALLOWED_ORIGINS", "http://localhost:3000")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from realtime_chat.server.auth import hash_password, issue_token
from realtime_chat.server.database import Base, get_db
from realtime_chat.server.errors import PersistenceError
from realtime_chat.server.main import create_app
from realtime_chat.server.models import User
from realtime_chat.server.store import SqlMessageStore
from realtime_chat.shared.events import ChatMessage

PASSWORD = "password1"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeConnection:
    """Connection handle that records what the server sent to it."""

    def __init__(self, name: str = "conn", alive: bool = True):
        self.name = name
        self.alive = alive
        self.sent: list[dict[str, Any]] = []

    async def send(self, event) -> bool:
        if not self.alive:
            return False
        self.sent.append(event.to_wire())
        return True

    def types(self) -> list[str]:
        return [item["type"] for item in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [item for item in self.sent if item["type"] == event_type]

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"


class FakeStore:
    """In-memory message store with the same contract as ``SqlMessageStore``."""

    def __init__(self) -> None:
        self.rows: list[ChatMessage] = []
        self.fail = False
        self.limits: list[int] = []
        self._clock = datetime(2024, 6, 15, 10, 30)

    def create_message(self, content: str, sender_id: int, receiver_id: int) -> ChatMessage:
        if self.fail:
            raise PersistenceError("Failed to send message")
        self._clock += timedelta(seconds=1)
        message = ChatMessage(
            id=len(self.rows) + 1,
            content=content,
            sender_id=sender_id,
            receiver_id=receiver_id,
            timestamp=self._clock,
        )
        self.rows.append(message)
        return message

    def list_recent_for_user(self, user_id: int, limit: int = 50) -> list[ChatMessage]:
        self.limits.append(limit)
        mine = [m for m in self.rows if user_id in (m.sender_id, m.receiver_id)]
        return mine[-limit:]

    def delete_message(self, message_id: int, requester_id: int) -> None:
        self.rows = [m for m in self.rows if m.id != message_id]


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    db = factory()
    db.add_all(
        [
            User(id=1, username="alice", password_hash=PASSWORD_HASH),
            User(id=2, username="bob", password_hash=PASSWORD_HASH),
            User(id=3, username="carol", password_hash=PASSWORD_HASH),
        ]
    )
    db.commit()
    db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlMessageStore:
    return SqlMessageStore(session_factory)


@pytest.fixture
def app(store, session_factory):
    app = create_app(store=store)

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user_id)}"}

    return _headers
