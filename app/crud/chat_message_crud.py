"""
Chat message CRUD (message log).

Ordering contract: the log's total order is (created_at, id) ascending.
`page` returns the newest N first because that is what the index serves
efficiently; callers that display messages must pass the page through
`chronological` and must not assume any particular storage order.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import desc, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import TransientStorageError, ValidationError
from app.crud.base import CRUDBase
from app.crud.chat_session_crud import chat_session_crud
from app.model.chat_message import ChatMessage, MESSAGE_TYPES
from app.model.chat_session import ChatSession

logger = logging.getLogger(__name__)


def chronological(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Presentation order: oldest first, id breaking timestamp ties."""
    return sorted(messages, key=lambda m: (m.created_at, m.id))


def to_payload(msg: ChatMessage) -> Dict[str, Any]:
    """Serialize a message joined with its sender's display info (new_message payload)."""
    sender = msg.sender
    return {
        "id": msg.id,
        "session_id": msg.session_id,
        "sender_id": msg.sender_id,
        "message_type": msg.message_type,
        "message_text": msg.message_text,
        "file_url": msg.file_url,
        "file_name": msg.file_name,
        "file_size": msg.file_size,
        "is_read": msg.is_read,
        "read_at": msg.read_at.isoformat() if msg.read_at else None,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
        "username": sender.username if sender else None,
        "full_name": sender.full_name if sender else None,
    }


class CRUDChatMessage(CRUDBase[ChatMessage, Dict[str, Any], Dict[str, Any]]):
    def append(
        self,
        db: Session,
        *,
        session_id: int,
        sender_id: int,
        message_type: str,
        body: Optional[str],
        file_ref: Optional[Dict[str, Any]],
        now: datetime,
    ) -> ChatMessage:
        """
        Persist one message. The commit is the single source of ordering truth.

        Raises:
            InvalidSession: session does not exist
            Forbidden: sender is not a participant
            ValidationError: type/body/file combination is invalid
            TransientStorageError: the write failed
        """
        chat_session_crud.assert_membership(db, session_id=session_id, user_id=sender_id)

        if message_type not in MESSAGE_TYPES:
            raise ValidationError(f"Unknown message type: {message_type!r}.")
        text = body.strip() if body else None
        if message_type == "text" and not text:
            raise ValidationError("Message text cannot be empty.")
        if message_type == "file" and not (file_ref and file_ref.get("url")):
            raise ValidationError("File messages need a file reference with a url.")

        file_ref = file_ref or {}
        try:
            msg = self.model(
                session_id=session_id,
                sender_id=sender_id,
                message_type=message_type,
                message_text=text,
                file_url=file_ref.get("url"),
                file_name=file_ref.get("name"),
                file_size=file_ref.get("size"),
                is_read=False,
                created_at=now,
            )
            db.add(msg)
            db.commit()
            db.refresh(msg)
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Failed to save chat message: %s", e)
            raise TransientStorageError("Failed to save message. Please try again.")
        return msg

    def page(
        self, db: Session, *, session_id: int, limit: int = 50, offset: int = 0
    ) -> List[ChatMessage]:
        """Newest first. See module docstring for the ordering contract."""
        return (
            db.query(self.model)
            .filter(self.model.session_id == session_id)
            .order_by(desc(self.model.created_at), desc(self.model.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_in_session(self, db: Session, *, session_id: int) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(self.model.session_id == session_id)
            .scalar()
            or 0
        )

    def last_message(self, db: Session, *, session_id: int) -> Optional[ChatMessage]:
        return (
            db.query(self.model)
            .filter(self.model.session_id == session_id)
            .order_by(desc(self.model.created_at), desc(self.model.id))
            .first()
        )

    def mark_read(self, db: Session, *, session_id: int, reader_id: int, now: datetime) -> int:
        """
        Mark the counterpart's unread messages as read. Returns how many changed.
        Flushes only; the caller commits together with the read cursor.
        """
        result = db.execute(
            update(self.model)
            .where(
                self.model.session_id == session_id,
                self.model.sender_id != reader_id,
                self.model.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        db.flush()
        return result.rowcount

    def unread_count_in_session(self, db: Session, *, session_id: int, user_id: int) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(
                self.model.session_id == session_id,
                self.model.sender_id != user_id,
                self.model.is_read.is_(False),
            )
            .scalar()
            or 0
        )

    def unread_count_for(self, db: Session, *, user_id: int) -> int:
        """Unread messages addressed to the user across all of their sessions."""
        return (
            db.query(func.count(self.model.id))
            .join(ChatSession, ChatSession.id == self.model.session_id)
            .filter(
                or_(ChatSession.participant_a_id == user_id, ChatSession.participant_b_id == user_id),
                self.model.sender_id != user_id,
                self.model.is_read.is_(False),
            )
            .scalar()
            or 0
        )


chat_message_crud = CRUDChatMessage(ChatMessage)
