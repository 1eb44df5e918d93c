"""
In-memory connection manager for chat WebSocket: connections, session rooms and broadcast.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

CONNECTED = "connected"
IDENTIFIED = "identified"
DISCONNECTED = "disconnected"


def room_name(session_id: int) -> str:
    """Room for a chat session. One room per session, derived from its id only."""
    return f"session_{session_id}"


class ChatConnection:
    """One client socket plus what the gateway has learned about it."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id: Optional[int] = None
        self.rooms: Set[str] = set()
        self.closed = False
        # Broadcasts from other connections' handlers may target this socket concurrently
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> str:
        if self.closed:
            return DISCONNECTED
        if self.user_id is None:
            return CONNECTED
        return IDENTIFIED

    @property
    def is_identified(self) -> bool:
        return self.state == IDENTIFIED

    def is_joined(self, session_id: int) -> bool:
        return room_name(session_id) in self.rooms

    async def send(self, event: str, payload: Any, room: Optional[str] = None) -> None:
        message: Dict[str, Any] = {"event": event, "payload": payload}
        if room is not None:
            message["room"] = room
        text = json.dumps(message, default=str)
        async with self._send_lock:
            await self.websocket.send_text(text)


class ConnectionManager:
    """Tracks live connections and room membership; fans events out to them."""

    def __init__(self) -> None:
        # connection_id -> connection
        self._connections: Dict[str, ChatConnection] = {}
        # room -> set of connection_id
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    def get(self, connection_id: str) -> Optional[ChatConnection]:
        return self._connections.get(connection_id)

    def members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room) or ())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def register(self, conn: ChatConnection) -> None:
        async with self._lock:
            self._connections[conn.connection_id] = conn
        logger.debug("Registered connection %s", conn.connection_id)

    async def unregister(self, conn: ChatConnection) -> None:
        """Drop the connection and all of its room memberships. Safe to call twice."""
        async with self._lock:
            self._remove(conn)
        conn.closed = True
        logger.debug("Unregistered connection %s", conn.connection_id)

    def _remove(self, conn: ChatConnection) -> None:
        for room in list(conn.rooms):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(conn.connection_id)
                if not members:
                    del self._rooms[room]
        conn.rooms.clear()
        self._connections.pop(conn.connection_id, None)

    async def join(self, conn: ChatConnection, room: str) -> None:
        async with self._lock:
            if conn.connection_id not in self._connections:
                raise RuntimeError(f"Connection {conn.connection_id} is not registered")
            self._rooms.setdefault(room, set()).add(conn.connection_id)
            conn.rooms.add(room)
        logger.debug("Connection %s joined %s", conn.connection_id, room)

    async def leave(self, conn: ChatConnection, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(conn.connection_id)
                if not members:
                    del self._rooms[room]
            conn.rooms.discard(room)

    async def send_to(self, conn: ChatConnection, event: str, payload: Any) -> bool:
        """Send to a single connection. Returns False if the socket is gone."""
        try:
            await conn.send(event, payload)
            return True
        except Exception as e:
            logger.warning("Send to %s failed: %s", conn.connection_id, e)
            return False

    async def _deliver(
        self,
        targets: List[ChatConnection],
        event: str,
        payload: Any,
        room: Optional[str] = None,
    ) -> int:
        delivered = 0
        dead = []
        for conn in targets:
            try:
                await conn.send(event, payload, room=room)
                delivered += 1
            except Exception as e:
                logger.warning("Broadcast send failed: %s", e)
                dead.append(conn)
        if dead:
            async with self._lock:
                for conn in dead:
                    self._remove(conn)
        return delivered

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: Any,
        exclude: Optional[ChatConnection] = None,
    ) -> int:
        """Send to every connection in the room at call time (except `exclude`). Returns deliveries."""
        async with self._lock:
            targets = [
                self._connections[cid]
                for cid in self._rooms.get(room, ())
                if cid in self._connections
            ]
        if exclude is not None:
            targets = [c for c in targets if c is not exclude]
        return await self._deliver(targets, event, payload, room=room)

    async def broadcast_all(
        self,
        event: str,
        payload: Any,
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """Send to every live connection (presence changes)."""
        async with self._lock:
            targets = [
                c for cid, c in self._connections.items()
                if cid != exclude_connection_id
            ]
        return await self._deliver(targets, event, payload)

    async def close_all(self) -> None:
        async with self._lock:
            conns = list(self._connections.values())
            self._connections.clear()
            self._rooms.clear()
        for conn in conns:
            conn.rooms.clear()
            conn.closed = True
            try:
                await conn.websocket.close(code=1001)
            except Exception as e:
                logger.debug("Close on shutdown failed for %s: %s", conn.connection_id, e)
