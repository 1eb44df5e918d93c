"""Pytest configuration and fixtures."""

import os
import tempfile

# Must be set before app modules build the engine and the uploads mount.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="chat-uploads-")
os.environ["S3_BUCKET_NAME"] = ""

import json
import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any, Optional

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.database import Base, SessionLocal, engine
from app.crud.chat_session_crud import make_pair_key
from app.model import ChatMessage, ChatParticipant, ChatSession, User
from app.session import session_layer


# --- Test DB (SQLite in-memory, one shared connection) ---


@pytest.fixture(autouse=True)
def setup_db() -> Generator[None, None, None]:
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Raw session for arranging and inspecting data. Commit after writes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(db: Session, user_id: int, full_name: Optional[str] = None) -> User:
    user = User(id=user_id, username=f"user{user_id}", full_name=full_name or f"User {user_id}")
    db.add(user)
    db.commit()
    return user


def make_session(
    db: Session, session_id: int, user_a_id: int, user_b_id: int, case_id: Optional[int] = None
) -> ChatSession:
    session = ChatSession(
        id=session_id,
        case_id=case_id,
        participant_a_id=user_a_id,
        participant_b_id=user_b_id,
        pair_key=make_pair_key(case_id, user_a_id, user_b_id),
    )
    db.add(session)
    db.add_all([
        ChatParticipant(session_id=session_id, user_id=user_a_id),
        ChatParticipant(session_id=session_id, user_id=user_b_id),
    ])
    db.commit()
    return session


def make_message(
    db: Session,
    session_id: int,
    sender_id: int,
    text: str,
    created_at: Optional[datetime] = None,
    is_read: bool = False,
) -> ChatMessage:
    msg = ChatMessage(
        session_id=session_id,
        sender_id=sender_id,
        message_type="text",
        message_text=text,
        is_read=is_read,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(msg)
    db.commit()
    return msg


@pytest.fixture
def case_42(db: Session) -> ChatSession:
    """Users 1, 2 and 3; users 1 and 2 share session 42 about case 7."""
    for user_id in (1, 2, 3):
        make_user(db, user_id)
    return make_session(db, 42, 1, 2, case_id=7)


# --- Test Redis (fakeredis) ---


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> fakeredis.FakeRedis:
    """Fresh fake Redis installed as the session layer's client."""
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(session_layer, "_redis_client", client)
    return client


def issue_token(user_id: int) -> str:
    """Store an identity session the way the identity service would."""
    token = uuid.uuid4().hex
    session_layer.create_session(token, {"user_id": user_id, "email": f"user{user_id}@test.com"})
    return token


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


# --- App client ---


@pytest.fixture
def client(
    fake_redis: fakeredis.FakeRedis, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """Test client with lifespan running; Redis swapped back to the fake after startup."""
    from main import app

    with TestClient(app) as test_client:
        monkeypatch.setattr(session_layer, "_redis_client", fake_redis)
        yield test_client


# --- Fake socket for coordinator/manager tests ---


class FakeWebSocket:
    """Records what the server sends; can be told to fail like a dead socket."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False
        self.closed_with: Optional[int] = None

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, name: Optional[str] = None) -> list[dict[str, Any]]:
        return [m for m in self.sent if name is None or m["event"] == name]
