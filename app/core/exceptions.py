"""
Application exceptions and the FastAPI handler that renders them.

The same classes are reported to WebSocket clients as `message_error` events
by the chat gateway, so every exception carries a stable `code`.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


# --- Authentication (401) ---


class NotAuthenticated(AppException):
    """No identity token was presented."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="NOT_AUTHENTICATED", status_code=401)


class SessionExpired(AppException):
    """Token not found in the session store."""

    def __init__(self) -> None:
        super().__init__(
            message="Session expired or invalid token",
            code="SESSION_EXPIRED",
            status_code=401,
        )


# --- Chat domain ---


class Forbidden(AppException):
    """Caller is not a participant of the session."""

    def __init__(self, message: str = "You are not a participant of this session.") -> None:
        super().__init__(message=message, code="FORBIDDEN", status_code=403)


class InvalidSession(AppException):
    """Referenced chat session does not exist."""

    def __init__(self, session_id=None) -> None:
        message = "Chat session not found"
        if session_id is not None:
            message = f"Chat session {session_id} not found"
        super().__init__(message=message, code="INVALID_SESSION", status_code=404)


class ValidationError(AppException):
    """Malformed event payload or request body."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400)


class TransientStorageError(AppException):
    """Persistence call failed. Not retried here."""

    def __init__(self, message: str = "Storage is temporarily unavailable. Please try again.") -> None:
        super().__init__(message=message, code="SERVICE_ERROR", status_code=503)


# --- Generic ---


class NotFound(AppException):
    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(message=f"{resource} not found", code="NOT_FOUND", status_code=404)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render AppException as {"detail": {"code", "message"}} like HTTPException details."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"code": exc.code, "message": exc.message}},
    )
