"""
Chat WebSocket gateway: per-connection receive loop and event routing.

Connection lifecycle: connected (anonymous) -> identified -> joined to 0..N
session rooms -> disconnected. Events from one connection are handled one at
a time, in the order they arrive. A bad event is answered with message_error
on that connection only; it never closes the socket or touches other clients.
"""
import json
import logging
from typing import Optional

import anyio
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadValidationError

from app.chat.connection_manager import ChatConnection, ConnectionManager
from app.chat.coordinator import DeliveryCoordinator
from app.core.exceptions import AppException, NotAuthenticated, ValidationError
from app.schema.chat import IdentifyEvent, JoinSessionEvent, MarkReadEvent, SendMessageEvent

logger = logging.getLogger(__name__)

EVENT_MODELS = {
    "identify": IdentifyEvent,
    "join_session": JoinSessionEvent,
    "send_message": SendMessageEvent,
    "mark_read": MarkReadEvent,
}


def _describe(exc: PayloadValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid event payload."
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "__root__")
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


class ChatGateway:
    def __init__(self, manager: ConnectionManager, coordinator: DeliveryCoordinator) -> None:
        self.manager = manager
        self.coordinator = coordinator

    async def serve(self, websocket: WebSocket, token: Optional[str] = None) -> None:
        """Run one client connection until it goes away."""
        await websocket.accept()
        conn = ChatConnection(websocket)
        await self.manager.register(conn)
        logger.info("Chat connection %s opened", conn.connection_id)
        try:
            if token:
                await self._guarded(conn, self.coordinator.identify(conn, token))
            while True:
                data = await websocket.receive_text()
                await self.handle(conn, data)
        except WebSocketDisconnect as e:
            logger.info("Chat connection %s closed (code=%s)", conn.connection_id, e.code)
        except Exception as e:
            logger.warning("WebSocket closed: %s", e)
        finally:
            # Hosts cancel the handler when the client goes away; cleanup must still finish.
            with anyio.CancelScope(shield=True):
                await self.coordinator.disconnect(conn)

    async def handle(self, conn: ChatConnection, raw: str) -> None:
        await self._guarded(conn, self._dispatch(conn, raw))

    async def _guarded(self, conn: ChatConnection, work) -> None:
        try:
            await work
        except AppException as e:
            logger.info("Rejected event from %s: %s", conn.connection_id, e.code)
            await self.reject(conn, e.code, e.message)
        except PayloadValidationError as e:
            await self.reject(conn, "VALIDATION_ERROR", _describe(e))
        except Exception:
            logger.exception("Unhandled error on chat connection %s", conn.connection_id)
            await self.reject(conn, "INTERNAL_ERROR", "Failed to process event.")

    async def reject(self, conn: ChatConnection, code: str, message: str) -> None:
        await self.manager.send_to(conn, "message_error", {"error": message, "code": code})

    async def _dispatch(self, conn: ChatConnection, raw: str) -> None:
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Request body must be valid JSON.")
        if not isinstance(obj, dict):
            raise ValidationError("Event must be a JSON object.")

        action = obj.get("action")
        model = EVENT_MODELS.get(action) if isinstance(action, str) else None
        if model is None:
            raise ValidationError("Expected action: identify, join_session, send_message, or mark_read.")
        event = model.model_validate(obj)

        if action == "identify":
            await self.coordinator.identify(conn, event.token)
            return
        if not conn.is_identified:
            raise NotAuthenticated("Identify before sending chat events.")

        if action == "join_session":
            await self.coordinator.join_session(conn, event.session_id)
        elif action == "send_message":
            await self.coordinator.send_message(conn, event)
        elif action == "mark_read":
            await self.coordinator.mark_read(conn, event.session_id)
