"""
Tests for Notification Fan-out.

These tests verify:
1. FAN-OUT: one record per distinct recipient, pushed live once committed
2. FAILURE: a failing store raises UpstreamError, best-effort callers continue
3. READ STATE: unread counts, mark read, mark all read, delete
4. OWNERSHIP: only the recipient may touch a notification
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio_portal.core.database import commit_session
from studio_portal.models import Notification, NotificationType, RelatedModel, RelatedRef, User
from studio_portal.services import (
    ForbiddenError,
    NotFoundError,
    NotificationFanout,
    UpstreamError,
)


async def count_notifications(session: AsyncSession) -> int:
    return await session.scalar(select(func.count()).select_from(Notification))


async def broken_flush(*args, **kwargs):
    raise SQLAlchemyError("database is gone")


# =============================================================================
# TEST: FAN-OUT
# =============================================================================


class TestNotify:
    async def test_one_record_per_distinct_recipient(
        self,
        session: AsyncSession,
        admin: User,
        client_user: User,
        team_member: User,
    ):
        task_id = uuid4()
        notifications = await NotificationFanout(session).notify(
            [client_user.id, team_member.id, client_user.id],
            admin.id,
            NotificationType.TASK_ASSIGNED,
            "You have been assigned a task",
            RelatedRef.task(task_id),
        )

        assert [n.recipient_id for n in notifications] == [client_user.id, team_member.id]
        for notification in notifications:
            assert notification.is_read is False
            assert notification.sender_id == admin.id
            assert notification.related == RelatedRef(RelatedModel.TASK, task_id)

    async def test_no_recipients_creates_nothing(self, session: AsyncSession, admin: User):
        result = await NotificationFanout(session).notify(
            [], admin.id, NotificationType.MESSAGE, "nobody"
        )

        assert result == []
        assert await count_notifications(session) == 0

    async def test_connected_recipient_gets_live_push(
        self,
        session: AsyncSession,
        gateway,
        connect,
        admin: User,
        team_member: User,
    ):
        connection = await connect(team_member)

        await NotificationFanout(session, gateway).notify(
            [team_member.id], admin.id, NotificationType.MESSAGE, "Ada: hello"
        )
        assert connection.socket.events("notification") == []

        await commit_session(session)

        pushed = connection.socket.events("notification")
        assert len(pushed) == 1
        assert pushed[0]["data"]["message"] == "Ada: hello"
        assert pushed[0]["data"]["type"] == "Message"

    async def test_rolled_back_notification_is_never_pushed(
        self,
        session: AsyncSession,
        gateway,
        connect,
        admin: User,
        team_member: User,
    ):
        connection = await connect(team_member)

        await NotificationFanout(session, gateway).notify(
            [team_member.id], admin.id, NotificationType.MESSAGE, "Ada: never mind"
        )
        await session.rollback()
        await commit_session(session)

        assert connection.socket.events("notification") == []
        assert await count_notifications(session) == 0

    async def test_failed_savepoint_keeps_earlier_pushes(
        self,
        monkeypatch,
        session: AsyncSession,
        gateway,
        connect,
        admin: User,
        team_member: User,
    ):
        connection = await connect(team_member)
        fanout = NotificationFanout(session, gateway)
        await fanout.notify([team_member.id], admin.id, NotificationType.MESSAGE, "first")

        with monkeypatch.context() as patch:
            patch.setattr(session, "flush", broken_flush)
            await fanout.notify_best_effort(
                [team_member.id], admin.id, NotificationType.MESSAGE, "second"
            )
        await commit_session(session)

        assert [f["data"]["message"] for f in connection.socket.events("notification")] == ["first"]

    async def test_admin_ids_can_exclude_one(
        self,
        session: AsyncSession,
        admin: User,
        team_member: User,
    ):
        fanout = NotificationFanout(session)

        assert await fanout.admin_ids() == [admin.id]
        assert await fanout.admin_ids(exclude=admin.id) == []


class TestNotifyFailure:
    async def test_store_failure_raises_upstream_error(
        self,
        session: AsyncSession,
        monkeypatch,
        admin: User,
        team_member: User,
    ):
        with monkeypatch.context() as patch:
            patch.setattr(session, "flush", broken_flush)
            with pytest.raises(UpstreamError):
                await NotificationFanout(session).notify(
                    [team_member.id], admin.id, NotificationType.MESSAGE, "lost"
                )

        assert await count_notifications(session) == 0

    async def test_best_effort_swallows_store_failure(
        self,
        session: AsyncSession,
        monkeypatch,
        admin: User,
        team_member: User,
    ):
        with monkeypatch.context() as patch:
            patch.setattr(session, "flush", broken_flush)
            result = await NotificationFanout(session).notify_best_effort(
                [team_member.id], admin.id, NotificationType.MESSAGE, "lost"
            )

        assert result == []

    async def test_failure_leaves_caller_transaction_usable(
        self,
        session: AsyncSession,
        monkeypatch,
        admin: User,
        team_member: User,
    ):
        fanout = NotificationFanout(session)
        with monkeypatch.context() as patch:
            patch.setattr(session, "flush", broken_flush)
            await fanout.notify_best_effort(
                [team_member.id], admin.id, NotificationType.MESSAGE, "lost"
            )

        await fanout.notify([team_member.id], admin.id, NotificationType.MESSAGE, "kept")
        await session.commit()

        count, items = await fanout.list_unread(team_member.id)
        assert count == 1
        assert items[0].message == "kept"


# =============================================================================
# TEST: READ STATE
# =============================================================================


class TestReadState:
    @pytest.fixture
    async def three_unread(self, session: AsyncSession, admin: User, team_member: User):
        fanout = NotificationFanout(session)
        for i in range(3):
            await fanout.notify(
                [team_member.id], admin.id, NotificationType.MESSAGE, f"update {i}"
            )
        await session.commit()
        return fanout

    async def test_list_unread_counts_and_sorts_newest_first(
        self,
        three_unread: NotificationFanout,
        team_member: User,
    ):
        count, items = await three_unread.list_unread(team_member.id)

        assert count == 3
        assert [n.message for n in items] == ["update 2", "update 1", "update 0"]
        assert items[0].sender.name == "Ada Admin"

    async def test_mark_read_drops_from_unread(
        self,
        three_unread: NotificationFanout,
        team_member: User,
    ):
        _, items = await three_unread.list_unread(team_member.id)

        notification = await three_unread.mark_read(items[0].id, team_member.id)
        count, _ = await three_unread.list_unread(team_member.id)

        assert notification.is_read is True
        assert count == 2

    async def test_mark_all_read(
        self,
        three_unread: NotificationFanout,
        team_member: User,
    ):
        assert await three_unread.mark_all_read(team_member.id) == 3
        assert await three_unread.mark_all_read(team_member.id) == 0

        count, items = await three_unread.list_unread(team_member.id)
        assert (count, items) == (0, [])
        assert len(await three_unread.list_notifications(team_member.id)) == 3

    async def test_only_recipient_can_mark_read(
        self,
        three_unread: NotificationFanout,
        team_member: User,
        outsider: User,
    ):
        _, items = await three_unread.list_unread(team_member.id)

        with pytest.raises(ForbiddenError):
            await three_unread.mark_read(items[0].id, outsider.id)

    async def test_delete(
        self,
        session: AsyncSession,
        three_unread: NotificationFanout,
        team_member: User,
        outsider: User,
    ):
        _, items = await three_unread.list_unread(team_member.id)

        with pytest.raises(ForbiddenError):
            await three_unread.delete(items[0].id, outsider.id)

        await three_unread.delete(items[0].id, team_member.id)
        assert await count_notifications(session) == 2

        with pytest.raises(NotFoundError):
            await three_unread.delete(items[0].id, team_member.id)
