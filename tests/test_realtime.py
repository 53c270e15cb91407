"""
Tests for the Realtime Gateway and its event handler.

These tests verify:
1. ROOMS: joining a chat room requires membership; personal rooms are implicit
2. SEND: messages are stored, then broadcast to the room in commit order
3. ISOLATION: a failing notification store never fails the send
4. ERRORS: failures go back to the originating connection only
5. TYPING: relayed to everyone in the room except the typist
"""

import asyncio
import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from studio_portal.core.security import create_access_token
from studio_portal.models import Message, Notification, NotificationType, User
from studio_portal.realtime import chat_room, user_room
from studio_portal.realtime.handlers import RealtimeEventHandler, authenticate
from studio_portal.schemas import MessageResponse
from studio_portal.services import (
    ChatMessenger,
    ChatRegistry,
    ForbiddenError,
    MessageStore,
    NotificationFanout,
    UpstreamError,
    ValidationError,
)


@pytest.fixture
async def project_chat(session: AsyncSession, project):
    chat = await ChatRegistry(session).get_project_chat(project.id)
    await session.commit()
    return chat


@pytest.fixture
def handler(gateway, session_factory) -> RealtimeEventHandler:
    return RealtimeEventHandler(gateway, session_factory)


async def join(handler, connection, chat):
    await handler.handle(connection, {"event": "join chat", "data": {"chat_id": str(chat.id)}})


async def send(handler, connection, chat, content, **extra):
    data = {"chat_id": str(chat.id), "content": content, **extra}
    await handler.handle(connection, {"event": "send", "data": data})


async def stored_messages(session_factory, chat) -> list[Message]:
    async with session_factory() as fresh:
        result = await fresh.execute(
            select(Message).where(Message.chat_id == chat.id).order_by(Message.seq)
        )
        return list(result.scalars().all())


# =============================================================================
# TEST: AUTHENTICATION
# =============================================================================


class TestAuthenticate:
    async def test_valid_token_resolves_user(self, session_factory, team_member: User):
        token = create_access_token(team_member.id, team_member.role.value)

        user = await authenticate(token, session_factory)

        assert user is not None
        assert user.id == team_member.id

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
    async def test_bad_token_is_refused(self, session_factory, token):
        assert await authenticate(token, session_factory) is None

    async def test_expired_token_is_refused(self, session_factory, team_member: User):
        token = create_access_token(
            team_member.id, team_member.role.value, expires_delta=timedelta(minutes=-1)
        )

        assert await authenticate(token, session_factory) is None


# =============================================================================
# TEST: ROOMS
# =============================================================================


class TestRooms:
    async def test_connection_starts_in_personal_room(self, gateway, connect, team_member):
        connection = await connect(team_member)

        assert connection.rooms == {user_room(team_member.id)}
        assert gateway.connection_count == 1

    async def test_member_can_join_chat(
        self,
        gateway,
        handler,
        connect,
        team_member: User,
        project_chat,
    ):
        connection = await connect(team_member)

        await join(handler, connection, project_chat)

        assert chat_room(project_chat.id) in connection.rooms
        assert connection.socket.sent == []

    async def test_non_member_cannot_join(
        self,
        gateway,
        handler,
        connect,
        outsider: User,
        project_chat,
    ):
        connection = await connect(outsider)

        await join(handler, connection, project_chat)

        assert gateway.room_members(chat_room(project_chat.id)) == set()
        errors = connection.socket.events("error")
        assert errors[0]["data"]["error"] == ForbiddenError.code

    async def test_personal_room_cannot_be_left(self, gateway, connect, team_member):
        connection = await connect(team_member)

        await gateway.leave(connection, user_room(team_member.id))

        assert user_room(team_member.id) in connection.rooms

    async def test_leave_and_disconnect(
        self,
        gateway,
        handler,
        connect,
        team_member: User,
        project_chat,
    ):
        connection = await connect(team_member)
        await join(handler, connection, project_chat)

        await handler.handle(
            connection, {"event": "leave chat", "data": {"chat_id": str(project_chat.id)}}
        )
        assert chat_room(project_chat.id) not in connection.rooms

        await gateway.disconnect(connection)
        assert gateway.connection_count == 0
        assert gateway.room_members(user_room(team_member.id)) == set()


# =============================================================================
# TEST: SENDING
# =============================================================================


class TestSend:
    async def test_send_persists_broadcasts_and_notifies(
        self,
        session_factory,
        handler,
        connect,
        admin: User,
        client_user: User,
        team_member: User,
        project_chat,
    ):
        sender = await connect(admin)
        listener = await connect(team_member)
        await join(handler, sender, project_chat)
        await join(handler, listener, project_chat)

        await send(handler, sender, project_chat, "Revised plans uploaded")

        for connection in (sender, listener):
            received = connection.socket.events("message received")
            assert len(received) == 1
            assert received[0]["data"]["content"] == "Revised plans uploaded"
            assert received[0]["data"]["chat_id"] == str(project_chat.id)
            assert received[0]["data"]["read_by"] == [str(admin.id)]

        # personal room push for the listener, none for the sender
        assert len(listener.socket.events("notification")) == 1
        assert sender.socket.events("notification") == []

        messages = await stored_messages(session_factory, project_chat)
        assert [m.content for m in messages] == ["Revised plans uploaded"]

        async with session_factory() as fresh:
            result = await fresh.execute(
                select(Notification.recipient_id).where(
                    Notification.type == NotificationType.MESSAGE
                )
            )
            recipients = set(result.scalars().all())
        assert recipients == {client_user.id, team_member.id}

    async def test_new_message_alias(
        self,
        session_factory,
        handler,
        connect,
        admin: User,
        project_chat,
    ):
        sender = await connect(admin)
        await join(handler, sender, project_chat)

        await handler.handle(
            sender,
            {"event": "new message", "data": {"chat_id": str(project_chat.id), "content": "hi"}},
        )

        assert len(sender.socket.events("message received")) == 1

    async def test_broadcast_order_matches_history(
        self,
        session_factory,
        handler,
        connect,
        admin: User,
        client_user: User,
        team_member: User,
        project_chat,
    ):
        """Concurrent senders: every listener sees the stored order."""
        connections = [await connect(u) for u in (admin, client_user, team_member)]
        for connection in connections:
            await join(handler, connection, project_chat)

        await asyncio.gather(*(
            send(handler, connection, project_chat, f"{i}-{n}")
            for n in range(3)
            for i, connection in enumerate(connections)
        ))

        stored = [m.content for m in await stored_messages(session_factory, project_chat)]
        assert len(stored) == 9
        for connection in connections:
            received = [f["data"]["content"] for f in connection.socket.events("message received")]
            assert received == stored

    async def test_notification_failure_does_not_fail_send(
        self,
        monkeypatch,
        session_factory,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        async def store_down(self, *args, **kwargs):
            raise UpstreamError("notification store is down")

        monkeypatch.setattr(NotificationFanout, "notify", store_down)
        sender = await connect(admin)
        listener = await connect(team_member)
        await join(handler, sender, project_chat)
        await join(handler, listener, project_chat)

        await send(handler, sender, project_chat, "Still delivered")

        assert sender.socket.events("message:error") == []
        assert len(listener.socket.events("message received")) == 1
        assert listener.socket.events("notification") == []
        assert [m.content for m in await stored_messages(session_factory, project_chat)] == [
            "Still delivered"
        ]

    async def test_failure_before_commit_stores_nothing(
        self,
        monkeypatch,
        session_factory,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        """A send reported as failed must leave no message behind."""

        def unrenderable(cls, message):
            raise RuntimeError("cannot render message")

        monkeypatch.setattr(MessageResponse, "from_model", classmethod(unrenderable))
        sender = await connect(admin)
        listener = await connect(team_member)
        await join(handler, sender, project_chat)
        await join(handler, listener, project_chat)

        await send(handler, sender, project_chat, "Survey done")

        assert len(sender.socket.events("message:error")) == 1
        assert listener.socket.sent == []
        assert await stored_messages(session_factory, project_chat) == []
        async with session_factory() as fresh:
            assert await fresh.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.type == NotificationType.MESSAGE)
            ) == 0

    async def test_broadcast_failure_after_commit_is_not_a_send_error(
        self,
        monkeypatch,
        session_factory,
        gateway,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        sender = await connect(admin)
        listener = await connect(team_member)
        await join(handler, sender, project_chat)
        await join(handler, listener, project_chat)

        async def gateway_down(*args, **kwargs):
            raise RuntimeError("gateway is down")

        monkeypatch.setattr(gateway, "emit", gateway_down)
        monkeypatch.setattr(gateway, "emit_to_user", gateway_down)

        await send(handler, sender, project_chat, "Stored anyway")

        assert sender.socket.events("message:error") == []
        assert [m.content for m in await stored_messages(session_factory, project_chat)] == [
            "Stored anyway"
        ]
        async with session_factory() as fresh:
            assert await fresh.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.type == NotificationType.MESSAGE)
            ) == 2

    async def test_invalid_send_errors_only_to_sender(
        self,
        session_factory,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        sender = await connect(admin)
        listener = await connect(team_member)
        await join(handler, sender, project_chat)
        await join(handler, listener, project_chat)

        await send(handler, sender, project_chat, "   ")

        errors = sender.socket.events("message:error")
        assert len(errors) == 1
        assert errors[0]["data"]["error"] == ValidationError.code
        assert errors[0]["data"]["event"] == "send"
        assert listener.socket.sent == []
        assert await stored_messages(session_factory, project_chat) == []

    async def test_non_member_send_is_forbidden(
        self,
        handler,
        connect,
        outsider: User,
        project_chat,
    ):
        connection = await connect(outsider)

        await send(handler, connection, project_chat, "let me in")

        errors = connection.socket.events("message:error")
        assert errors[0]["data"]["error"] == ForbiddenError.code

    async def test_dead_socket_is_dropped(
        self,
        gateway,
        handler,
        connect,
        admin: User,
        client_user: User,
        project_chat,
    ):
        sender = await connect(admin)
        dead = await connect(client_user, fail=True)
        await join(handler, sender, project_chat)
        await join(handler, dead, project_chat)

        await send(handler, sender, project_chat, "anyone there?")

        assert len(sender.socket.events("message received")) == 1
        assert dead not in gateway.room_members(chat_room(project_chat.id))
        assert gateway.connection_count == 1


# =============================================================================
# TEST: TYPING AND PROTOCOL ERRORS
# =============================================================================


class TestTypingAndErrors:
    async def test_typing_relayed_to_others_only(
        self,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        typist = await connect(admin)
        listener = await connect(team_member)
        await join(handler, typist, project_chat)
        await join(handler, listener, project_chat)

        for event in ("typing", "stop typing"):
            await handler.handle(typist, {"event": event, "data": {"chat_id": str(project_chat.id)}})

        assert typist.socket.sent == []
        assert [f["event"] for f in listener.socket.sent] == ["typing", "stop typing"]
        assert listener.socket.sent[0]["data"]["user_id"] == str(admin.id)

    async def test_typing_requires_joined_room(
        self,
        handler,
        connect,
        admin: User,
        project_chat,
    ):
        typist = await connect(admin)

        await handler.handle(typist, {"event": "typing", "data": {"chat_id": str(project_chat.id)}})

        assert typist.socket.events("error")[0]["data"]["error"] == ForbiddenError.code

    async def test_unknown_event(self, handler, connect, admin: User):
        connection = await connect(admin)

        await handler.handle(connection, {"event": "dance", "data": {}})

        assert connection.socket.events("error")[0]["data"]["error"] == "unknown_event"

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            json.dumps(["send"]),
            json.dumps({"event": ["send"]}),
            json.dumps({"event": 7}),
            json.dumps({"event": "send", "data": "hello"}),
            json.dumps({"event": "join chat", "data": ["chat"]}),
        ],
    )
    async def test_malformed_frame(self, handler, connect, admin: User, raw):
        connection = await connect(admin)

        await handler.handle_raw(connection, raw)

        errors = connection.socket.events("error")
        assert len(errors) == 1
        assert errors[0]["data"]["error"] == ValidationError.code
        assert connection.socket.events("message:error") == []

    async def test_connection_survives_malformed_frame(
        self,
        handler,
        connect,
        admin: User,
        project_chat,
    ):
        connection = await connect(admin)

        await handler.handle_raw(connection, json.dumps({"event": ["send"]}))
        await join(handler, connection, project_chat)

        assert chat_room(project_chat.id) in connection.rooms

    async def test_bad_chat_id(self, handler, connect, admin: User):
        connection = await connect(admin)

        await handler.handle(connection, {"event": "join chat", "data": {"chat_id": "nope"}})

        assert connection.socket.events("error")[0]["data"]["error"] == ValidationError.code


class TestHttpSendSharesPipeline:
    async def test_messages_sent_outside_socket_reach_room(
        self,
        session: AsyncSession,
        gateway,
        handler,
        connect,
        admin: User,
        team_member: User,
        project_chat,
    ):
        """The HTTP route and the socket use the same send path."""
        listener = await connect(team_member)
        await join(handler, listener, project_chat)

        response = await ChatMessenger(session, gateway).send(
            admin.id, project_chat.id, "Posted over HTTP"
        )

        assert listener.socket.events("message received")[0]["data"]["id"] == str(response.id)
        history = await MessageStore(session).list_messages(project_chat.id, team_member.id)
        assert [m.content for m in history] == ["Posted over HTTP"]
