"""
End-to-end project flow.

Admin creates a project, the team talks in the provisioned chat, a task is
submitted and approved, and the milestone deliverable closes the milestone.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studio_portal.models import (
    MilestoneStatus,
    Notification,
    NotificationType,
    TaskStatus,
    User,
)
from studio_portal.schemas import ReviewDecision, TaskCreate
from studio_portal.services import (
    ChatMessenger,
    ChatRegistry,
    NotificationFanout,
    ProgressAggregator,
    StoredFile,
    SubmissionInput,
    TaskLifecycleEngine,
)


async def received(session: AsyncSession, user: User, type: NotificationType) -> list[Notification]:
    result = await session.execute(
        select(Notification).where(
            Notification.recipient_id == user.id,
            Notification.type == type,
        )
    )
    return list(result.scalars().all())


class TestProjectFlow:
    async def test_project_chat_task_and_deliverable(
        self,
        session: AsyncSession,
        gateway,
        connect,
        admin: User,
        client_user: User,
        team_member: User,
        project,
        stored_file: StoredFile,
    ):
        # Project comes with a group chat for admin, client, and team
        chats = ChatRegistry(session)
        chat = await chats.get_project_chat(project.id)
        assert set(chat.member_ids) == {admin.id, client_user.id, team_member.id}

        # Team member reports in the chat
        client_socket = await connect(client_user)
        await gateway.join(client_socket, f"chat:{chat.id}")
        sent = await ChatMessenger(session, gateway).send(team_member.id, chat.id, "Survey done")

        assert sent.read_by == [team_member.id]
        chat = await chats.get_chat(chat.id)
        assert chat.latest_message_id == sent.id
        assert client_socket.socket.events("message received")[0]["data"]["content"] == "Survey done"
        for user in (admin, client_user):
            assert len(await received(session, user, NotificationType.MESSAGE)) == 1
        assert await received(session, team_member, NotificationType.MESSAGE) == []

        # Task submitted and approved
        engine = TaskLifecycleEngine(session, NotificationFanout(session, gateway))
        milestone = project.milestones[0]
        task = await engine.create_task(
            admin,
            TaskCreate(
                name="Topographic survey",
                project_id=project.id,
                milestone_id=milestone.id,
                assigned_to=team_member.id,
            ),
        )
        await engine.submit(task.id, team_member, SubmissionInput(file=stored_file))
        outcome = await engine.review(task.id, admin, ReviewDecision.APPROVED)
        await session.commit()

        assert outcome.task.status == TaskStatus.COMPLETED
        assert outcome.milestone_ready is True
        assert len(await received(session, team_member, NotificationType.TASK_REVIEWED)) == 1

        # Deliverable closes the milestone and moves progress
        result = await ProgressAggregator(session).upload_milestone_deliverable(
            project.id, milestone.id, admin, stored_file
        )

        assert result.project.milestone(milestone.id).status == MilestoneStatus.COMPLETED
        assert result.project.overall_progress == 25
        uploaded = await received(session, client_user, NotificationType.DOCUMENT_UPLOADED)
        assert [n.related_id for n in uploaded] == [result.document.id]
