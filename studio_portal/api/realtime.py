"""Websocket endpoint for the realtime channel."""

import logging

from fastapi import APIRouter, Depends, Header, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import async_session_factory
from ..core.security import strip_bearer
from ..realtime import Connection, GatewayDep
from ..realtime.handlers import RealtimeEventHandler, authenticate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    gateway: GatewayDep,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    token: str | None = Query(None),
    authorization: str | None = Header(None),
):
    """Authenticated realtime session.

    The bearer token comes from the ``token`` query parameter or the
    Authorization header and is checked once, before the socket is accepted.
    """
    user = await authenticate(strip_bearer(token) or strip_bearer(authorization), session_factory)
    if user is None:
        logger.warning("Realtime connection refused: missing or invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    await websocket.accept()
    connection = Connection(websocket, user.id, user.role.value)
    await gateway.connect(connection)
    await connection.send("connected", {"user_id": user.id, "connection_id": connection.id})

    handler = RealtimeEventHandler(gateway, session_factory)
    try:
        while True:
            raw = await websocket.receive_text()
            await handler.handle_raw(connection, raw)
    except WebSocketDisconnect:
        logger.debug(f"Realtime connection {connection.id} closed by client")
    finally:
        await gateway.disconnect(connection)
