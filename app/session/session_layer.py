"""
Session layer - Redis-backed identity token store.

Tokens are issued by the identity subsystem, which stores the session data
under `session:<token>`. This service only reads them, except for
create_session which seeds sessions for local development.
"""
from typing import Optional, Dict, Any
import logging
import json
import redis

logger = logging.getLogger(__name__)

# Redis connection pool and client
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None
_session_ttl: int = 86400


def init_redis(host: str, port: int, db: int, session_ttl: int = 86400) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client, _session_ttl
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=10
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    _session_ttl = session_ttl
    logger.info("Redis initialized: %s:%s/%s, TTL: %ss", host, port, db, session_ttl)


def get_redis_client() -> redis.Redis:
    """Get Redis client. Raises if not initialized."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def create_session(token: str, user_data: Dict[str, Any]) -> None:
    """Store token and user data in Redis session with TTL."""
    client = get_redis_client()
    client.setex(f"session:{token}", _session_ttl, json.dumps(user_data))
    logger.info("Session created for user_id=%s", user_data.get("user_id"))


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """Get user data from Redis session if token exists."""
    client = get_redis_client()
    data = client.get(f"session:{token}")
    if data:
        return json.loads(data)
    return None


def resolve_user_id(token: str) -> Optional[int]:
    """Map an identity token to the user id it was issued for, or None."""
    session = get_session(token)
    if not session or session.get("user_id") is None:
        return None
    try:
        return int(session["user_id"])
    except (TypeError, ValueError):
        logger.warning("Session for token carries a non-integer user_id")
        return None


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract bearer token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]
