"""Realtime gateway: rooms of authenticated websocket connections.

Every connection sits in its own user's personal room for its whole
lifetime and may join any number of chat rooms. The gateway is built once
per process and handed to whatever needs to broadcast.
"""

import asyncio
import logging
from collections import defaultdict
from functools import lru_cache
from typing import Annotated, Any, Protocol
from uuid import UUID, uuid4

from fastapi import Depends
from fastapi.encoders import jsonable_encoder

from ..core.locks import KeyedLock

logger = logging.getLogger(__name__)


class JSONSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


def user_room(user_id: UUID) -> str:
    return f"user:{user_id}"


def chat_room(chat_id: UUID) -> str:
    return f"chat:{chat_id}"


class Connection:
    """One authenticated socket session."""

    def __init__(self, socket: JSONSocket, user_id: UUID, role: str):
        self.id = uuid4().hex
        self.socket = socket
        self.user_id = user_id
        self.role = role
        self.rooms: set[str] = set()

    async def send(self, event: str, data: Any = None) -> None:
        await self.socket.send_json({"event": event, "data": jsonable_encoder(data)})

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id}>"


class RealtimeGateway:
    """Room membership and delivery for live connections."""

    def __init__(self):
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()
        # Serializes persist-then-broadcast per chat
        self.chat_lock = KeyedLock()

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    async def connect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections[connection.id] = connection
            self._join(connection, user_room(connection.user_id))
        logger.info(f"Realtime connected: {connection!r}")

    async def join(self, connection: Connection, room: str) -> None:
        async with self._lock:
            self._join(connection, room)
        logger.debug(f"{connection!r} joined {room}")

    async def leave(self, connection: Connection, room: str) -> None:
        if room == user_room(connection.user_id):
            return
        async with self._lock:
            self._leave(connection, room)
        logger.debug(f"{connection!r} left {room}")

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            self._drop(connection)
        logger.info(f"Realtime disconnected: {connection!r}")

    def _join(self, connection: Connection, room: str) -> None:
        self._rooms[room].add(connection)
        connection.rooms.add(room)

    def _leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[room]
        connection.rooms.discard(room)

    def _drop(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self._leave(connection, room)
        self._connections.pop(connection.id, None)

    def room_members(self, room: str) -> set[Connection]:
        return set(self._rooms.get(room, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def emit(
        self,
        room: str,
        event: str,
        data: Any = None,
        exclude: Connection | None = None,
    ) -> int:
        """Send an event to every connection in a room.

        Sockets that fail are dropped from the gateway. Returns the number
        of connections that received the event.
        """
        async with self._lock:
            targets = [c for c in self._rooms.get(room, ()) if c is not exclude]

        delivered = 0
        dead: list[Connection] = []
        for connection in targets:
            try:
                await connection.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping {connection!r} after failed send: {e}")
                dead.append(connection)

        if dead:
            async with self._lock:
                for connection in dead:
                    self._drop(connection)
        return delivered

    async def emit_to_user(self, user_id: UUID, event: str, data: Any = None) -> int:
        return await self.emit(user_room(user_id), event, data)


@lru_cache
def get_gateway() -> RealtimeGateway:
    """Process-wide gateway instance."""
    return RealtimeGateway()


GatewayDep = Annotated[RealtimeGateway, Depends(get_gateway)]
