"""
Presence registry: which user currently has a live chat connection.

The map lives in process memory only and starts empty on every restart.
The users.is_online/socket_id/last_seen columns are a best-effort mirror; after
an ungraceful process exit they may read "online" until reconciled elsewhere.

Only one connection per user is tracked (last connect wins). An earlier
connection of the same user stays connected and keeps its room memberships,
but presence no longer points at it.
"""
import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.core.database import SessionLocal
from app.crud import user_crud

logger = logging.getLogger(__name__)

# (event, payload, exclude_connection_id) -> awaitable
Broadcaster = Callable[[str, Dict[str, Any], Optional[str]], Awaitable[Any]]


class UserStatusStore:
    """Writes presence transitions to the users table."""

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def mark_online(self, user_id: int, socket_id: str) -> None:
        with self._session_factory() as db:
            user_crud.set_online(db, user_id=user_id, socket_id=socket_id)

    def mark_offline(self, user_id: int, last_seen: datetime) -> None:
        with self._session_factory() as db:
            user_crud.set_offline(db, user_id=user_id, last_seen=last_seen)


class PresenceRegistry:
    """
    Single writer of the user -> connection map. Mutated only from the event loop.

    Announcements go out one at a time in the order the map changed. The
    durable mirror is written after the announcement and always reflects the
    map as it is when the write runs, so a reconnect during a slow offline
    write still ends with the row marked online.
    """

    def __init__(
        self,
        status_store: Optional[UserStatusStore] = None,
        broadcast: Optional[Broadcaster] = None,
    ) -> None:
        self._connections: Dict[int, str] = {}
        self._status_store = status_store
        self._broadcast = broadcast
        self._announce_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    def is_online(self, user_id: int) -> bool:
        return user_id in self._connections

    def connection_for(self, user_id: int) -> Optional[str]:
        return self._connections.get(user_id)

    def online_user_ids(self) -> List[int]:
        return list(self._connections)

    async def set_online(self, user_id: int, connection_id: str) -> Optional[str]:
        """Map user to connection. Returns the superseded connection id, if any."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection_id
        if previous == connection_id:
            return None
        if previous is not None:
            logger.info("User %s reconnected; connection %s supersedes %s", user_id, connection_id, previous)
        else:
            logger.info("User %s online (connection %s)", user_id, connection_id)
            await self._announce(user_id, True, connection_id)
        await self._sync_status(user_id)
        return previous

    async def set_offline(self, user_id: int, connection_id: Optional[str] = None) -> bool:
        """
        Remove the user's mapping. With connection_id, only if it is still the
        current connection. Returns True when the user actually went offline.
        """
        current = self._connections.get(user_id)
        if current is None:
            return False
        if connection_id is not None and current != connection_id:
            logger.debug("Superseded connection %s of user %s closed", connection_id, user_id)
            return False
        del self._connections[user_id]
        logger.info("User %s offline", user_id)

        await self._announce(user_id, False, connection_id)
        await self._sync_status(user_id)
        return True

    def clear(self) -> None:
        """Forget everyone. Called at shutdown; durable rows are left to reconciliation."""
        self._connections.clear()

    async def _sync_status(self, user_id: int) -> None:
        """Write the user's current state (read under the lock) to the durable mirror."""
        if self._status_store is None:
            return
        async with self._write_lock:
            connection_id = self._connections.get(user_id)
            try:
                if connection_id is not None:
                    await run_in_threadpool(self._status_store.mark_online, user_id, connection_id)
                else:
                    await run_in_threadpool(
                        self._status_store.mark_offline, user_id, datetime.now(timezone.utc)
                    )
            except SQLAlchemyError as e:
                logger.warning("Presence status write failed for user %s: %s", user_id, e)

    async def _announce(self, user_id: int, is_online: bool, exclude_connection_id: Optional[str]) -> None:
        if self._broadcast is None:
            return
        async with self._announce_lock:
            await self._broadcast(
                "user_status_changed",
                {"userId": user_id, "isOnline": is_online},
                exclude_connection_id,
            )
