"""Event handling for authenticated realtime connections.

Inbound frames are ``{"event": <name>, "data": {...}}``. Failures go back to
the originating connection only: ``message:error`` for sends, ``error`` for
everything else.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import async_session_factory, get_session_context
from ..core.security import decode_token
from ..models import User
from ..services.chats import ChatRegistry
from ..services.errors import ForbiddenError, PortalError, ValidationError
from ..services.messaging import ChatMessenger
from .gateway import Connection, RealtimeGateway, chat_room

logger = logging.getLogger(__name__)

SEND_EVENTS = ("send", "new message")


def parse_uuid(value: Any, field: str) -> UUID | None:
    if value is None or value == "":
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid id")


async def authenticate(
    token: str | None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> User | None:
    """Resolve a bearer token to an existing user, or None."""
    if not token:
        return None
    payload = decode_token(token)
    if payload is None or payload.type != "access":
        return None
    try:
        user_id = UUID(payload.sub)
    except ValueError:
        return None
    async with get_session_context(session_factory) as session:
        return await session.get(User, user_id)


class RealtimeEventHandler:
    """Dispatches inbound events for one gateway."""

    def __init__(
        self,
        gateway: RealtimeGateway,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.gateway = gateway
        self.session_factory = session_factory or async_session_factory
        self._handlers: dict[str, Callable[[Connection, dict], Awaitable[None]]] = {
            "join chat": self.join_chat,
            "leave chat": self.leave_chat,
            "typing": self.typing,
            "stop typing": self.stop_typing,
            "send": self.send,
            "new message": self.send,
        }

    async def handle_raw(self, connection: Connection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await connection.send("error", {"error": "validation_error", "message": "Malformed frame"})
            return
        if not isinstance(frame, dict):
            await connection.send("error", {"error": "validation_error", "message": "Malformed frame"})
            return
        await self.handle(connection, frame)

    async def handle(self, connection: Connection, frame: dict) -> None:
        event = frame.get("event")
        data = frame.get("data")
        if data is None:
            data = {}
        if not isinstance(event, str) or not isinstance(data, dict):
            await connection.send(
                "error",
                {"error": "validation_error", "message": "event must be a string and data an object"},
            )
            return
        handler = self._handlers.get(event)
        if handler is None:
            await connection.send("error", {"error": "unknown_event", "message": f"Unknown event: {event}"})
            return

        error_event = "message:error" if event in SEND_EVENTS else "error"
        try:
            await handler(connection, data)
        except PortalError as e:
            logger.info(f"Realtime {event!r} from {connection!r} failed: {e.message}")
            await connection.send(error_event, {"event": event, "error": e.code, "message": e.message})
        except Exception:
            logger.exception(f"Realtime {event!r} from {connection!r} crashed")
            await connection.send(
                error_event,
                {"event": event, "error": "internal_error", "message": "Something went wrong"},
            )

    # =========================================================================
    # ROOMS
    # =========================================================================

    async def join_chat(self, connection: Connection, data: dict) -> None:
        chat_id = parse_uuid(data.get("chat_id"), "chat_id")
        if chat_id is None:
            raise ValidationError("chat_id is required")
        async with get_session_context(self.session_factory) as session:
            await ChatRegistry(session).get_chat(chat_id, connection.user_id)
        await self.gateway.join(connection, chat_room(chat_id))
        logger.info(f"{connection!r} joined chat {chat_id}")

    async def leave_chat(self, connection: Connection, data: dict) -> None:
        chat_id = parse_uuid(data.get("chat_id"), "chat_id")
        if chat_id is None:
            raise ValidationError("chat_id is required")
        await self.gateway.leave(connection, chat_room(chat_id))

    # =========================================================================
    # TYPING
    # =========================================================================

    async def _relay_typing(self, connection: Connection, data: dict, event: str) -> None:
        chat_id = parse_uuid(data.get("chat_id"), "chat_id")
        if chat_id is None:
            raise ValidationError("chat_id is required")
        room = chat_room(chat_id)
        if room not in connection.rooms:
            raise ForbiddenError("Join the chat before sending typing events")
        await self.gateway.emit(
            room,
            event,
            {"chat_id": chat_id, "user_id": connection.user_id},
            exclude=connection,
        )

    async def typing(self, connection: Connection, data: dict) -> None:
        await self._relay_typing(connection, data, "typing")

    async def stop_typing(self, connection: Connection, data: dict) -> None:
        await self._relay_typing(connection, data, "stop typing")

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def send(self, connection: Connection, data: dict) -> None:
        chat_id = parse_uuid(data.get("chat_id"), "chat_id")
        reply_to = parse_uuid(data.get("reply_to"), "reply_to")
        attachments = data.get("attachments") or []
        if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
            raise ValidationError("attachments must be a list of objects")

        async with get_session_context(self.session_factory) as session:
            await ChatMessenger(session, self.gateway).send(
                connection.user_id,
                chat_id,
                content=data.get("content"),
                attachments=attachments,
                reply_to=reply_to,
            )
