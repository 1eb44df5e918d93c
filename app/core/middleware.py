"""
Session Middleware - resolves the identity token to session data for each HTTP request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable
from app.session import extract_token, get_session
import logging

logger = logging.getLogger(__name__)


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads session from Redis based on Authorization header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.session = {}
        request.state.token = None

        token = extract_token(request.headers.get("authorization"))
        if token:
            user_data = get_session(token)
            if user_data:
                request.state.session = user_data
                request.state.token = token
            else:
                logger.debug("Unknown or expired token on %s", request.url.path)

        return await call_next(request)
