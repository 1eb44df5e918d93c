"""
Pending-notification hook for messages delivered while the recipient is offline.

Actual delivery (push, email) belongs to an external notification channel;
this module only records the signal.
"""
import json
import logging
from typing import Any, Callable, Dict, List

import redis
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.session import get_redis_client

logger = logging.getLogger(__name__)


class PendingNotifier:
    """Base hook: logs the signal."""

    async def notify(self, user_id: int, message: Dict[str, Any]) -> None:
        logger.info(
            "User %s has a new message in session %s but is offline",
            user_id, message.get("session_id"),
        )


class RedisPendingNotifier(PendingNotifier):
    """Keeps the newest pending signals per user in a capped Redis list."""

    KEY_PREFIX = "chat:pending_notifications:"

    def __init__(
        self,
        client_factory: Callable[[], redis.Redis] = get_redis_client,
        max_entries: int = settings.PENDING_NOTIFICATIONS_MAX,
    ) -> None:
        self._client_factory = client_factory
        self._max_entries = max_entries

    def key_for(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    async def notify(self, user_id: int, message: Dict[str, Any]) -> None:
        await super().notify(user_id, message)
        record = json.dumps({
            "session_id": message.get("session_id"),
            "message_id": message.get("id"),
            "sender_id": message.get("sender_id"),
            "created_at": message.get("created_at"),
        })
        try:
            await run_in_threadpool(self._push, user_id, record)
        except (redis.RedisError, RuntimeError) as e:
            logger.warning("Could not record pending notification for user %s: %s", user_id, e)

    def _push(self, user_id: int, record: str) -> None:
        key = self.key_for(user_id)
        pipe = self._client_factory().pipeline()
        pipe.lpush(key, record)
        pipe.ltrim(key, 0, self._max_entries - 1)
        pipe.execute()

    def pending_for(self, user_id: int) -> List[Dict[str, Any]]:
        """Recorded signals, newest first."""
        raw = self._client_factory().lrange(self.key_for(user_id), 0, -1)
        return [json.loads(r) for r in raw]
