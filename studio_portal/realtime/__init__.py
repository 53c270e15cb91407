"""Realtime messaging over websockets."""

from .gateway import (
    Connection,
    GatewayDep,
    RealtimeGateway,
    chat_room,
    get_gateway,
    user_room,
)

__all__ = [
    "Connection",
    "GatewayDep",
    "RealtimeGateway",
    "chat_room",
    "get_gateway",
    "user_room",
]
