from .session_layer import (
    init_redis,
    get_redis_client,
    create_session,
    get_session,
    resolve_user_id,
    extract_token,
)

__all__ = [
    "init_redis",
    "get_redis_client",
    "create_session",
    "get_session",
    "resolve_user_id",
    "extract_token",
]
