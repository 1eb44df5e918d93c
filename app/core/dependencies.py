"""
FastAPI dependencies for route protection.
"""
from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.exceptions import NotAuthenticated, SessionExpired
from typing import Dict, Any, Optional

# Security scheme for OpenAPI docs (shows lock icon and Authorization header)
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Identity token issued by the identity service",
    auto_error=False,
)


async def validate_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """
    Validates session loaded by middleware.

    Returns:
        Session data dict; always contains user_id

    Raises:
        NotAuthenticated: No token provided
        SessionExpired: Token not found in Redis
    """
    if not request.state.token:
        if credentials is None:
            raise NotAuthenticated()
        raise SessionExpired()

    if not request.state.session or "user_id" not in request.state.session:
        raise SessionExpired()

    return request.state.session


def current_user_id(current_user: Dict[str, Any] = Depends(validate_session)) -> int:
    """Caller identity as an integer user id."""
    return int(current_user["user_id"])
