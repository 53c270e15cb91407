"""Project registry: projects, team membership, and milestone lists."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.database import commit_session
from ..models import (
    Milestone,
    MilestoneStatus,
    NotificationType,
    Project,
    ProjectMember,
    RelatedRef,
    User,
    UserRole,
)
from ..schemas.projects import ProjectCreate
from .chats import ChatRegistry
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .notifications import NotificationFanout
from .progress import ProgressAggregator, project_lock

logger = logging.getLogger(__name__)


def can_view_project(project: Project, user: User) -> bool:
    if user.is_admin or project.client_id == user.id:
        return True
    return any(m.user_id == user.id for m in project.members)


class ProjectRegistry:
    def __init__(self, session: AsyncSession, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)
        self.chats = ChatRegistry(session)
        self.progress = ProgressAggregator(session, self.fanout)

    def _project_query(self):
        return select(Project).options(
            selectinload(Project.client),
            selectinload(Project.milestones),
            selectinload(Project.members).selectinload(ProjectMember.user),
        )

    async def get_project(self, project_id: UUID, user: User | None = None) -> Project:
        """Fetch a project; with user given, enforce visibility."""
        project = await self.progress.load_project(project_id)
        if user is not None and not can_view_project(project, user):
            raise ForbiddenError("You do not have access to this project")
        return project

    async def list_projects(self, user: User) -> list[Project]:
        """Admins see everything, clients their own, team members theirs."""
        query = self._project_query().order_by(Project.created_at.desc())
        if user.role == UserRole.CLIENT:
            query = query.where(Project.client_id == user.id)
        elif not user.is_admin:
            query = query.join(ProjectMember, ProjectMember.project_id == Project.id).where(
                ProjectMember.user_id == user.id
            )
        result = await self.session.execute(query)
        return list(result.scalars().unique().all())

    async def create_project(self, admin: User, data: ProjectCreate) -> Project:
        """Create a project, its group chat, and notify the team."""
        if not admin.is_admin:
            raise ForbiddenError("Only admins can create projects")

        client = await self.session.get(User, data.client_id)
        if client is None or client.role != UserRole.CLIENT:
            raise ValidationError("client_id must reference an existing client")

        team_ids = [t for t in dict.fromkeys(data.team_member_ids) if t != client.id]
        if team_ids:
            result = await self.session.execute(select(User.id).where(User.id.in_(team_ids)))
            missing = set(team_ids) - set(result.scalars().all())
            if missing:
                raise NotFoundError(f"{len(missing)} team member(s) not found")

        existing = await self.session.scalar(
            select(Project.id).where(Project.project_no == data.project_no)
        )
        if existing is not None:
            raise ConflictError(f"Project number {data.project_no} is already in use")

        project = Project(
            project_no=data.project_no,
            name=data.name,
            description=data.description,
            client_id=client.id,
            location=data.location,
            budget=data.budget,
            start_date=data.start_date,
            end_date=data.end_date,
            created_by=admin.id,
            milestones=[
                Milestone(name=m.name, status=m.status, is_enabled=m.is_enabled, position=i)
                for i, m in enumerate(data.milestones)
            ],
            members=[ProjectMember(user_id=user_id) for user_id in team_ids],
        )
        self.session.add(project)
        await self.session.flush()
        await self.progress.recompute(project.id)
        logger.info(f"Project {project.project_no} created by {admin.id}")

        await self.chats.provision_project_chat(project, admin.id, [client.id, *team_ids])

        await self.fanout.notify_best_effort(
            [t for t in team_ids if t != admin.id],
            admin.id,
            NotificationType.TASK_ASSIGNED,
            f"You have been added to project {project.name}",
            RelatedRef.project(project.id),
        )
        return await self.get_project(project.id)

    async def add_team_member(
        self,
        project_id: UUID,
        user_id: UUID,
        actor: User,
        role: str = "Contributor",
    ) -> Project:
        """Add a user to the team and the project chat. Idempotent."""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can manage project teams")
        project = await self.get_project(project_id)
        if any(m.user_id == user_id for m in project.members):
            return project
        if await self.session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        try:
            async with self.session.begin_nested():
                self.session.add(ProjectMember(project_id=project.id, user_id=user_id, role=role))
                await self.session.flush()
        except IntegrityError:
            logger.debug(f"User {user_id} joined project {project.id} concurrently")
            return await self.get_project(project.id)

        chat = await self.chats.get_project_chat(project.id)
        if chat is not None:
            await self.chats.add_member(chat.id, user_id)

        logger.info(f"User {user_id} added to project {project.project_no}")
        await self.fanout.notify_best_effort(
            [user_id],
            actor.id,
            NotificationType.TASK_ASSIGNED,
            f"You have been added to project {project.name}",
            RelatedRef.project(project.id),
        )
        return await self.get_project(project.id)

    async def add_milestone(
        self,
        project_id: UUID,
        name: str,
        actor: User,
        status: MilestoneStatus = MilestoneStatus.PENDING,
        is_enabled: bool = True,
    ) -> Project:
        """Append a milestone and recompute progress."""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can add milestones")
        async with project_lock(project_id):
            await self.progress.lock_project(project_id)
            project = await self.get_project(project_id)
            self.session.add(
                Milestone(
                    project_id=project.id,
                    name=name,
                    status=status,
                    is_enabled=is_enabled,
                    position=len(project.milestones),
                )
            )
            await self.progress.recompute(project.id)
            await commit_session(self.session)
        return await self.get_project(project_id)
