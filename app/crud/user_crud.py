"""
User CRUD operations. Chat only reads users and mirrors presence onto them.
"""
from datetime import datetime
from sqlalchemy import update
from sqlalchemy.orm import Session
from app.model.user import User
from app.crud.base import CRUDBase


class CRUDUser(CRUDBase[User, dict, dict]):
    """User-specific CRUD operations."""


    def set_online(self, db: Session, *, user_id: int, socket_id: str) -> None:
        db.execute(
            update(self.model)
            .where(self.model.id == user_id)
            .values(is_online=True, socket_id=socket_id)
        )
        db.commit()

    def set_offline(self, db: Session, *, user_id: int, last_seen: datetime) -> None:
        db.execute(
            update(self.model)
            .where(self.model.id == user_id)
            .values(is_online=False, socket_id=None, last_seen=last_seen)
        )
        db.commit()


user_crud = CRUDUser(User)
