"""Tests for the chat REST endpoints."""

import os
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.config import settings
from app.model import ChatSession
from conftest import auth_headers, make_message, make_session, make_user

BASE = "/api/v1/chat"


class TestAuth:
    def test_missing_token(self, client: TestClient) -> None:
        res = client.get(f"{BASE}/sessions")
        assert res.status_code == 401
        assert res.json()["detail"]["code"] == "NOT_AUTHENTICATED"

    def test_unknown_token(self, client: TestClient) -> None:
        res = client.get(f"{BASE}/sessions", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401
        assert res.json()["detail"]["code"] == "SESSION_EXPIRED"


class TestSessions:
    def test_create_is_idempotent_across_orderings(self, client: TestClient, db: Session) -> None:
        make_user(db, 1)
        make_user(db, 2)

        first = client.post(f"{BASE}/sessions", json={"caseId": 7, "otherUserId": 2}, headers=auth_headers(1))
        second = client.post(f"{BASE}/sessions", json={"caseId": 7, "otherUserId": 1}, headers=auth_headers(2))

        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["other_participant"]["user_id"] == 2
        assert second.json()["other_participant"]["user_id"] == 1

    def test_cannot_chat_with_self(self, client: TestClient, db: Session) -> None:
        make_user(db, 1)
        res = client.post(f"{BASE}/sessions", json={"otherUserId": 1}, headers=auth_headers(1))
        assert res.status_code == 400
        assert res.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_unknown_counterpart(self, client: TestClient, db: Session) -> None:
        make_user(db, 1)
        res = client.post(f"{BASE}/sessions", json={"otherUserId": 99}, headers=auth_headers(1))
        assert res.status_code == 404

    def test_get_session_membership(self, client: TestClient, case_42: ChatSession) -> None:
        assert client.get(f"{BASE}/sessions/42", headers=auth_headers(1)).status_code == 200

        outsider = client.get(f"{BASE}/sessions/42", headers=auth_headers(3))
        assert outsider.status_code == 403
        assert outsider.json()["detail"]["code"] == "FORBIDDEN"

        missing = client.get(f"{BASE}/sessions/999", headers=auth_headers(1))
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "INVALID_SESSION"

    def test_list_sessions_with_preview(self, client: TestClient, case_42: ChatSession, db: Session) -> None:
        make_session(db, 43, 1, 3, case_id=8)
        make_message(db, 42, 2, "x" * 250)

        items = client.get(f"{BASE}/sessions", headers=auth_headers(1)).json()

        by_id = {item["id"]: item for item in items}
        assert set(by_id) == {42, 43}
        assert by_id[42]["unread_count"] == 1
        assert by_id[42]["last_message"] == "x" * 200 + "..."
        assert by_id[42]["last_message_type"] == "text"
        assert by_id[43]["last_message"] is None
        assert by_id[43]["other_participant"]["username"] == "user3"


class TestMessages:
    def test_page_is_chronological_and_walks_back(
        self, client: TestClient, case_42: ChatSession, db: Session
    ) -> None:
        base = datetime(2026, 2, 1, tzinfo=timezone.utc)
        for i in range(5):
            make_message(db, 42, 1 + i % 2, f"m{i}", created_at=base + timedelta(minutes=i))

        first = client.get(f"{BASE}/sessions/42/messages?limit=2", headers=auth_headers(1)).json()
        second = client.get(f"{BASE}/sessions/42/messages?limit=2&page=2", headers=auth_headers(1)).json()

        assert [m["message_text"] for m in first["items"]] == ["m3", "m4"]
        assert [m["message_text"] for m in second["items"]] == ["m1", "m2"]
        assert first["total"] == 5
        assert first["total_pages"] == 3

    def test_outsider_cannot_read_history(self, client: TestClient, case_42: ChatSession) -> None:
        res = client.get(f"{BASE}/sessions/42/messages", headers=auth_headers(3))
        assert res.status_code == 403

    def test_limit_is_bounded(self, client: TestClient, case_42: ChatSession) -> None:
        res = client.get(
            f"{BASE}/sessions/42/messages?limit={settings.CHAT_PAGE_MAX_LIMIT + 1}",
            headers=auth_headers(1),
        )
        assert res.status_code == 422

    def test_unread_count(self, client: TestClient, case_42: ChatSession, db: Session) -> None:
        make_message(db, 42, 1, "a")
        make_message(db, 42, 1, "b", is_read=True)

        assert client.get(f"{BASE}/unread-count", headers=auth_headers(2)).json() == {"unread_count": 1}
        assert client.get(f"{BASE}/unread-count", headers=auth_headers(1)).json() == {"unread_count": 0}


class TestUpload:
    def test_local_upload(self, client: TestClient, db: Session) -> None:
        make_user(db, 1)

        res = client.post(
            f"{BASE}/upload",
            files={"file": ("estimate.pdf", b"%PDF-1.4 test", "application/pdf")},
            headers=auth_headers(1),
        )

        assert res.status_code == 200
        body = res.json()
        assert body["name"] == "estimate.pdf"
        assert body["size"] == len(b"%PDF-1.4 test")
        assert body["mimetype"] == "application/pdf"
        assert body["url"].startswith("/uploads/chat/")
        assert body["url"].endswith(".pdf")
        stored = os.path.join(settings.UPLOAD_DIR, "chat", os.path.basename(body["url"]))
        with open(stored, "rb") as f:
            assert f.read() == b"%PDF-1.4 test"

        served = client.get(body["url"])
        assert served.status_code == 200

    def test_too_large(self, client: TestClient, db: Session) -> None:
        make_user(db, 1)
        res = client.post(
            f"{BASE}/upload",
            files={"file": ("big.bin", b"0" * (settings.MAX_UPLOAD_SIZE + 1), "application/octet-stream")},
            headers=auth_headers(1),
        )
        assert res.status_code == 413
        assert res.json()["detail"]["code"] == "FILE_TOO_LARGE"

    def test_requires_auth(self, client: TestClient) -> None:
        res = client.post(f"{BASE}/upload", files={"file": ("a.txt", b"x", "text/plain")})
        assert res.status_code == 401

    def test_s3_upload_when_bucket_configured(
        self, client: TestClient, db: Session, monkeypatch
    ) -> None:
        from app.router.api.v1 import chat as chat_router

        make_user(db, 1)
        uploads = []

        def fake_upload(key: str, body: bytes, content_type: str) -> str:
            uploads.append((key, body, content_type))
            return f"https://bucket.s3.us-east-1.amazonaws.com/{key}"

        monkeypatch.setattr(settings, "S3_BUCKET_NAME", "bucket")
        monkeypatch.setattr(chat_router, "upload_to_s3", fake_upload)

        res = client.post(
            f"{BASE}/upload",
            files={"file": ("photo.jpg", b"jpeg-bytes", "image/jpeg")},
            headers=auth_headers(1),
        )

        assert res.status_code == 200
        key, body, content_type = uploads[0]
        assert key.startswith("chat/1/") and key.endswith(".jpg")
        assert (body, content_type) == (b"jpeg-bytes", "image/jpeg")
        assert res.json()["url"].endswith(key)
