"""
Delivery coordinator: validates inbound chat events, persists them and fans
the results out.

Persistence runs in the threadpool with a fresh DB session per call. No lock
is held across those calls; the uniqueness rules (one session per pair, one
read cursor per participant) are enforced by database constraints.
Broadcasts happen only after the write has committed.
"""
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional, Tuple

import redis
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.chat.connection_manager import ChatConnection, ConnectionManager, room_name
from app.chat.notifications import PendingNotifier
from app.chat.presence import PresenceRegistry
from app.core.database import SessionLocal
from app.core.exceptions import Forbidden, SessionExpired, TransientStorageError, ValidationError
from app.crud import chat_message_crud, chat_participant_crud, chat_session_crud
from app.crud.chat_message_crud import to_payload
from app.schema.chat import SendMessageEvent
from app.session import resolve_user_id

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryCoordinator:
    def __init__(
        self,
        manager: ConnectionManager,
        presence: PresenceRegistry,
        notifier: Optional[PendingNotifier] = None,
        session_factory=SessionLocal,
        identity_resolver=resolve_user_id,
    ) -> None:
        self.manager = manager
        self.presence = presence
        self.notifier = notifier or PendingNotifier()
        self._session_factory = session_factory
        self._resolve_identity = identity_resolver

    async def _run(self, fn, *args):
        """Run blocking persistence off the event loop; storage errors become TransientStorageError."""
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as e:
            logger.exception("Chat storage call %s failed: %s", getattr(fn, "__name__", fn), e)
            raise TransientStorageError()

    # --- identify ---

    async def identify(self, conn: ChatConnection, token: str) -> int:
        """Bind the connection to the user the token was issued for and mark them online."""
        try:
            user_id = await run_in_threadpool(self._resolve_identity, token)
        except redis.RedisError as e:
            logger.warning("Identity lookup failed: %s", e)
            raise TransientStorageError("Identity service unavailable. Please try again.")
        if user_id is None:
            raise SessionExpired()
        if conn.user_id is not None and conn.user_id != user_id:
            raise ValidationError("Connection is already identified as another user.")

        conn.user_id = user_id
        await self.presence.set_online(user_id, conn.connection_id)
        await self.manager.send_to(conn, "identified", {"userId": user_id})
        return user_id

    # --- join_session ---

    def _check_membership(self, session_id: int, user_id: int) -> None:
        with self._session_factory() as db:
            chat_session_crud.assert_membership(db, session_id=session_id, user_id=user_id)

    async def join_session(self, conn: ChatConnection, session_id: int) -> None:
        """Admit the connection to the session room only after membership is confirmed."""
        await self._run(self._check_membership, session_id, conn.user_id)
        await self.manager.join(conn, room_name(session_id))
        logger.info("User %s joined session %s", conn.user_id, session_id)
        await self.manager.send_to(conn, "session_joined", {"sessionId": session_id})

    # --- send_message ---

    def _persist_message(
        self, sender_id: int, event: SendMessageEvent, now: datetime
    ) -> Tuple[Dict[str, Any], int]:
        with self._session_factory() as db:
            msg = chat_message_crud.append(
                db,
                session_id=event.session_id,
                sender_id=sender_id,
                message_type=event.message_type,
                body=event.message,
                file_ref=event.file_info.model_dump() if event.file_info else None,
                now=now,
            )
            try:
                chat_session_crud.touch_activity(db, session_id=event.session_id, timestamp=now)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning("Could not update last activity of session %s: %s", event.session_id, e)
            payload = to_payload(msg)
            recipient_id = msg.session.other_participant_id(sender_id)
        return payload, recipient_id

    async def send_message(self, conn: ChatConnection, event: SendMessageEvent) -> Dict[str, Any]:
        """Persist, then broadcast new_message to the room; flag the counterpart if offline."""
        if not conn.is_joined(event.session_id):
            raise Forbidden("Join the session before sending messages.")

        payload, recipient_id = await self._run(self._persist_message, conn.user_id, event, utcnow())
        await self.manager.broadcast(room_name(event.session_id), "new_message", payload)

        if not self.presence.is_online(recipient_id):
            try:
                await self.notifier.notify(recipient_id, payload)
            except Exception as e:
                logger.warning("Pending notification hook failed for user %s: %s", recipient_id, e)
        return payload

    # --- mark_read ---

    def _persist_read(self, session_id: int, reader_id: int, now: datetime) -> int:
        with self._session_factory() as db:
            chat_session_crud.assert_membership(db, session_id=session_id, user_id=reader_id)
            changed = chat_message_crud.mark_read(db, session_id=session_id, reader_id=reader_id, now=now)
            chat_participant_crud.upsert_read_cursor(db, session_id=session_id, user_id=reader_id, now=now)
            db.commit()
        return changed

    async def mark_read(self, conn: ChatConnection, session_id: int) -> int:
        """Mark the counterpart's messages read and tell the rest of the room (not the reader)."""
        changed = await self._run(self._persist_read, session_id, conn.user_id, utcnow())
        logger.debug("User %s read %s message(s) in session %s", conn.user_id, changed, session_id)
        await self.manager.broadcast(
            room_name(session_id),
            "messages_read",
            {"sessionId": session_id, "userId": conn.user_id},
            exclude=conn,
        )
        return changed

    # --- disconnect ---

    async def disconnect(self, conn: ChatConnection) -> None:
        user_id = conn.user_id
        await self.manager.unregister(conn)
        if user_id is not None:
            await self.presence.set_offline(user_id, conn.connection_id)
