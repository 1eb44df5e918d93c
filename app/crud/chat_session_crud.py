"""
Chat session CRUD (session store).

A session is unique per (case, unordered participant pair). Uniqueness is
enforced by the `pair_key` constraint, not by application locks: concurrent
creators race on the insert and the loser re-reads the winner's row.
"""
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy import and_, desc, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import Forbidden, InvalidSession, TransientStorageError, ValidationError
from app.crud.base import CRUDBase
from app.model.chat_message import ChatMessage
from app.model.chat_participant import ChatParticipant
from app.model.chat_session import ChatSession

logger = logging.getLogger(__name__)


def make_pair_key(case_id: Optional[int], user_a_id: int, user_b_id: int) -> str:
    low, high = sorted((user_a_id, user_b_id))
    case_part = "-" if case_id is None else str(case_id)
    return f"{case_part}:{low}:{high}"


class CRUDChatSession(CRUDBase[ChatSession, dict, dict]):
    def get_by_id(self, db: Session, *, session_id: int) -> Optional[ChatSession]:
        return db.query(self.model).filter(self.model.id == session_id).first()

    def find_for_pair(
        self, db: Session, *, case_id: Optional[int], user_a_id: int, user_b_id: int
    ) -> Optional[ChatSession]:
        """Session for the case and the pair, whichever order it was stored in."""
        case_filter = self.model.case_id.is_(None) if case_id is None else self.model.case_id == case_id
        return (
            db.query(self.model)
            .filter(
                case_filter,
                or_(
                    and_(self.model.participant_a_id == user_a_id, self.model.participant_b_id == user_b_id),
                    and_(self.model.participant_a_id == user_b_id, self.model.participant_b_id == user_a_id),
                ),
            )
            .first()
        )

    def get_or_create(
        self, db: Session, *, case_id: Optional[int], user_a_id: int, user_b_id: int
    ) -> Tuple[ChatSession, bool]:
        """
        Return (session, created). New sessions keep the participant order given
        here and get a read-cursor row for each participant.
        """
        if user_a_id == user_b_id:
            raise ValidationError("A chat session needs two different participants.")

        existing = self.find_for_pair(db, case_id=case_id, user_a_id=user_a_id, user_b_id=user_b_id)
        if existing:
            return existing, False

        session = self.model(
            case_id=case_id,
            participant_a_id=user_a_id,
            participant_b_id=user_b_id,
            pair_key=make_pair_key(case_id, user_a_id, user_b_id),
        )
        try:
            db.add(session)
            db.flush()
            db.add_all([
                ChatParticipant(session_id=session.id, user_id=user_a_id),
                ChatParticipant(session_id=session.id, user_id=user_b_id),
            ])
            db.commit()
        except IntegrityError:
            # Lost the race against the counterpart's create; use their row.
            db.rollback()
            logger.info(
                "Concurrent session create for case=%s pair=(%s, %s); re-reading",
                case_id, user_a_id, user_b_id,
            )
            existing = self.find_for_pair(db, case_id=case_id, user_a_id=user_a_id, user_b_id=user_b_id)
            if existing is None:
                raise TransientStorageError("Failed to create chat session. Please try again.")
            return existing, False
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Failed to create chat session: %s", e)
            raise TransientStorageError("Failed to create chat session. Please try again.")
        db.refresh(session)
        logger.info("Chat session %s created for case=%s (%s, %s)", session.id, case_id, user_a_id, user_b_id)
        return session, True

    def assert_membership(self, db: Session, *, session_id: int, user_id: int) -> ChatSession:
        """Authorization gate for anything that reads or writes a session."""
        session = self.get_by_id(db, session_id=session_id)
        if session is None:
            raise InvalidSession(session_id)
        if not session.has_participant(user_id):
            raise Forbidden()
        return session

    def touch_activity(self, db: Session, *, session_id: int, timestamp: datetime) -> None:
        db.execute(
            update(self.model)
            .where(self.model.id == session_id)
            .values(last_message_at=timestamp)
        )
        db.commit()

    def list_for_user(
        self, db: Session, *, user_id: int
    ) -> List[Tuple[ChatSession, Optional[ChatMessage], int]]:
        """
        Sessions the user participates in, most recent activity first, each with
        its last message (or None) and the user's unread count in it.
        """
        sessions = (
            db.query(self.model)
            .filter(or_(self.model.participant_a_id == user_id, self.model.participant_b_id == user_id))
            .order_by(
                self.model.last_message_at.desc().nulls_last(),
                desc(self.model.created_at),
                desc(self.model.id),
            )
            .all()
        )
        if not sessions:
            return []
        session_ids = [s.id for s in sessions]
        unread_rows = (
            db.query(ChatMessage.session_id, func.count(ChatMessage.id))
            .filter(
                ChatMessage.session_id.in_(session_ids),
                ChatMessage.sender_id != user_id,
                ChatMessage.is_read.is_(False),
            )
            .group_by(ChatMessage.session_id)
            .all()
        )
        unread = {sid: count for sid, count in unread_rows}
        from app.crud.chat_message_crud import chat_message_crud  # chat_message_crud imports this module

        result = []
        for session in sessions:
            last = chat_message_crud.last_message(db, session_id=session.id)
            result.append((session, last, unread.get(session.id, 0)))
        return result


chat_session_crud = CRUDChatSession(ChatSession)
