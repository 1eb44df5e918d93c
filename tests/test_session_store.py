"""Tests for the chat session store (chat_session_crud)."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import Forbidden, InvalidSession, ValidationError
from app.crud import chat_participant_crud, chat_session_crud
from app.crud.chat_session_crud import make_pair_key
from app.model import ChatParticipant, ChatSession
from conftest import make_message, make_session, make_user


@pytest.fixture
def users(db: Session) -> None:
    for user_id in (1, 2, 3):
        make_user(db, user_id)


def _session_count(db: Session) -> int:
    return db.query(func.count(ChatSession.id)).scalar()


class TestPairKey:
    def test_is_order_independent(self) -> None:
        assert make_pair_key(7, 1, 2) == make_pair_key(7, 2, 1)

    def test_distinguishes_cases(self) -> None:
        assert make_pair_key(7, 1, 2) != make_pair_key(8, 1, 2)
        assert make_pair_key(None, 1, 2) != make_pair_key(7, 1, 2)


class TestGetOrCreate:
    def test_creates_with_given_order_and_participants(self, db: Session, users) -> None:
        session, created = chat_session_crud.get_or_create(db, case_id=7, user_a_id=2, user_b_id=1)

        assert created is True
        assert session.participant_a_id == 2
        assert session.participant_b_id == 1
        assert session.case_id == 7
        rows = db.query(ChatParticipant).filter(ChatParticipant.session_id == session.id).all()
        assert sorted(r.user_id for r in rows) == [1, 2]

    def test_either_ordering_returns_same_session(self, db: Session, users) -> None:
        first, _ = chat_session_crud.get_or_create(db, case_id=7, user_a_id=1, user_b_id=2)
        second, created = chat_session_crud.get_or_create(db, case_id=7, user_a_id=2, user_b_id=1)

        assert created is False
        assert second.id == first.id
        assert _session_count(db) == 1

    def test_separate_session_per_case(self, db: Session, users) -> None:
        a, _ = chat_session_crud.get_or_create(db, case_id=7, user_a_id=1, user_b_id=2)
        b, _ = chat_session_crud.get_or_create(db, case_id=8, user_a_id=1, user_b_id=2)

        assert a.id != b.id

    def test_sessions_without_case_are_deduplicated(self, db: Session, users) -> None:
        a, _ = chat_session_crud.get_or_create(db, case_id=None, user_a_id=1, user_b_id=2)
        b, created = chat_session_crud.get_or_create(db, case_id=None, user_a_id=2, user_b_id=1)

        assert created is False
        assert a.id == b.id

    def test_rejects_self_chat(self, db: Session, users) -> None:
        with pytest.raises(ValidationError):
            chat_session_crud.get_or_create(db, case_id=7, user_a_id=1, user_b_id=1)

    def test_losing_a_create_race_returns_winner(
        self, db: Session, users, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        # The counterpart committed between our lookup and our insert.
        winner = make_session(db, 10, 2, 1, case_id=7)
        real_find = chat_session_crud.find_for_pair
        calls = {"n": 0}

        def stale_first_lookup(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_find(*args, **kwargs)

        monkeypatch.setattr(chat_session_crud, "find_for_pair", stale_first_lookup)

        session, created = chat_session_crud.get_or_create(db, case_id=7, user_a_id=1, user_b_id=2)

        assert created is False
        assert session.id == winner.id
        assert calls["n"] == 2
        assert _session_count(db) == 1


class TestAssertMembership:
    def test_participant_gets_session(self, db: Session, users) -> None:
        make_session(db, 42, 1, 2)
        session = chat_session_crud.assert_membership(db, session_id=42, user_id=2)
        assert session.id == 42

    def test_non_participant_is_forbidden(self, db: Session, users) -> None:
        make_session(db, 42, 1, 2)
        with pytest.raises(Forbidden):
            chat_session_crud.assert_membership(db, session_id=42, user_id=3)

    def test_unknown_session(self, db: Session, users) -> None:
        with pytest.raises(InvalidSession):
            chat_session_crud.assert_membership(db, session_id=999, user_id=1)


class TestTouchAndList:
    def test_touch_activity(self, db: Session, users) -> None:
        make_session(db, 42, 1, 2)
        ts = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        chat_session_crud.touch_activity(db, session_id=42, timestamp=ts)

        db.expire_all()
        stored = chat_session_crud.get_by_id(db, session_id=42).last_message_at
        assert stored.replace(tzinfo=None) == ts.replace(tzinfo=None)

    def test_list_for_user_orders_by_activity_with_preview_and_unread(self, db: Session, users) -> None:
        make_session(db, 1, 1, 2, case_id=7)
        make_session(db, 2, 1, 3, case_id=7)
        make_session(db, 3, 2, 3, case_id=7)
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        make_message(db, 1, 2, "older", created_at=base)
        make_message(db, 2, 3, "first", created_at=base + timedelta(minutes=1))
        make_message(db, 2, 3, "newest", created_at=base + timedelta(minutes=2))
        make_message(db, 2, 1, "mine", created_at=base + timedelta(minutes=3))
        chat_session_crud.touch_activity(db, session_id=1, timestamp=base)
        chat_session_crud.touch_activity(db, session_id=2, timestamp=base + timedelta(minutes=3))

        result = chat_session_crud.list_for_user(db, user_id=1)

        assert [s.id for s, _, _ in result] == [2, 1]
        session, last, unread = result[0]
        assert last.message_text == "mine"
        assert unread == 2
        assert result[1][2] == 1

    def test_list_for_user_without_sessions(self, db: Session, users) -> None:
        assert chat_session_crud.list_for_user(db, user_id=3) == []


class TestReadCursor:
    def test_upsert_keeps_one_row(self, db: Session, users) -> None:
        make_session(db, 42, 1, 2)
        t1 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        t2 = t1 + timedelta(hours=1)

        chat_participant_crud.upsert_read_cursor(db, session_id=42, user_id=2, now=t1)
        chat_participant_crud.upsert_read_cursor(db, session_id=42, user_id=2, now=t2)

        rows = (
            db.query(ChatParticipant)
            .filter(ChatParticipant.session_id == 42, ChatParticipant.user_id == 2)
            .all()
        )
        assert len(rows) == 1
        db.expire_all()
        assert rows[0].last_read_at.replace(tzinfo=None) == t2.replace(tzinfo=None)

    def test_upsert_inserts_missing_row(self, db: Session, users) -> None:
        make_session(db, 42, 1, 2)
        db.query(ChatParticipant).filter(ChatParticipant.user_id == 2).delete()
        db.commit()

        chat_participant_crud.upsert_read_cursor(
            db, session_id=42, user_id=2, now=datetime.now(timezone.utc)
        )

        row = chat_participant_crud.get_by_session_and_user(db, session_id=42, user_id=2)
        assert row is not None
        assert row.last_read_at is not None
