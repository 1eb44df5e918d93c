"""
Chat participant CRUD (per-user read cursors).
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.model.chat_participant import ChatParticipant
from app.crud.base import CRUDBase


class CRUDChatParticipant(CRUDBase[ChatParticipant, dict, dict]):
    def get_by_session_and_user(
        self, db: Session, *, session_id: int, user_id: int
    ) -> Optional[ChatParticipant]:
        return (
            db.query(self.model)
            .filter(
                self.model.session_id == session_id,
                self.model.user_id == user_id,
            )
            .first()
        )

    def _update_cursor(self, db: Session, session_id: int, user_id: int, now: datetime) -> int:
        result = db.execute(
            update(self.model)
            .where(self.model.session_id == session_id, self.model.user_id == user_id)
            .values(last_read_at=now)
        )
        return result.rowcount

    def upsert_read_cursor(
        self, db: Session, *, session_id: int, user_id: int, now: datetime
    ) -> None:
        """Set last_read_at for (session, user); exactly one row per pair. Flushes only."""
        if self._update_cursor(db, session_id, user_id, now):
            db.flush()
            return
        try:
            with db.begin_nested():
                db.add(self.model(session_id=session_id, user_id=user_id, last_read_at=now))
        except IntegrityError:
            # Row appeared between the update and the insert
            self._update_cursor(db, session_id, user_id, now)
            db.flush()


chat_participant_crud = CRUDChatParticipant(ChatParticipant)
