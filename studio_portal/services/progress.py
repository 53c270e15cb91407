"""Milestone and project progress.

overall_progress is always recomputed from the current milestone rows and
never adjusted incrementally. Writers hold the project's in-process lock and
its row lock (SELECT ... FOR UPDATE) until they commit, so concurrent uploads
each count the other's work, across workers too.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.database import commit_session
from ..core.locks import KeyedLock
from ..models import (
    Document,
    DocumentComment,
    DocumentStatus,
    DocumentType,
    Milestone,
    MilestoneStatus,
    NotificationType,
    Project,
    ProjectMember,
    RelatedRef,
    User,
)
from .errors import ForbiddenError, NotFoundError, ValidationError
from .notifications import NotificationFanout
from .storage import StoredFile

logger = logging.getLogger(__name__)

project_lock = KeyedLock()


def project_row_lock(project_id: UUID):
    """Lock the project row until commit. SQLite ignores FOR UPDATE."""
    return select(Project.id).where(Project.id == project_id).with_for_update()


def progress_percent(completed: int, total: int) -> int:
    """round(100 * completed / total), halves rounded up; 0 when empty."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass
class DeliverableResult:
    document: Document
    project: Project


class ProgressAggregator:
    def __init__(self, session: AsyncSession, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)

    async def load_project(self, project_id: UUID) -> Project:
        result = await self.session.execute(
            select(Project)
            .options(
                selectinload(Project.client),
                selectinload(Project.milestones),
                selectinload(Project.members).selectinload(ProjectMember.user),
            )
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project not found")
        return project

    async def lock_project(self, project_id: UUID) -> None:
        if await self.session.scalar(project_row_lock(project_id)) is None:
            raise NotFoundError("Project not found")

    async def recompute(self, project_id: UUID) -> int:
        """Re-derive overall_progress from the stored milestones."""
        await self.session.flush()
        row = (
            await self.session.execute(
                select(
                    func.count(Milestone.id),
                    func.count(case((Milestone.status == MilestoneStatus.COMPLETED, 1))),
                ).where(Milestone.project_id == project_id)
            )
        ).one()
        total, completed = row
        progress = progress_percent(completed, total)

        project = await self.session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.overall_progress != progress:
            logger.info(
                f"Project {project.project_no} progress "
                f"{project.overall_progress}% -> {progress}% ({completed}/{total})"
            )
        project.overall_progress = progress
        await self.session.flush()
        return progress

    async def upload_milestone_deliverable(
        self,
        project_id: UUID,
        milestone_id: UUID,
        uploader: User,
        file: StoredFile,
        name: str | None = None,
        notes: str | None = None,
    ) -> DeliverableResult:
        """Attach a milestone's final deliverable and complete the milestone.

        Creates a Deliverable document in Review, marks the milestone
        Completed, recomputes project progress, and tells the client.
        Nothing is written if any step before the commit fails.
        """
        if not uploader.is_admin:
            raise ForbiddenError("Only admins can upload milestone deliverables")
        if file is None or not file.url:
            raise ValidationError("A deliverable file is required")

        async with project_lock(project_id):
            await self.lock_project(project_id)
            project = await self.load_project(project_id)
            milestone = project.milestone(milestone_id)
            if milestone is None:
                raise NotFoundError("Milestone not found on this project")

            previous = await self.session.scalar(
                select(func.count(Document.id)).where(
                    Document.milestone_id == milestone_id,
                    Document.type == DocumentType.DELIVERABLE,
                )
            )
            document = Document(
                name=name or f"{milestone.name} deliverable",
                project_id=project_id,
                milestone_id=milestone_id,
                uploaded_by=uploader.id,
                file=file.to_dict(),
                type=DocumentType.DELIVERABLE,
                version=(previous or 0) + 1,
                notes=notes,
                status=DocumentStatus.REVIEW,
            )
            self.session.add(document)

            if milestone.status != MilestoneStatus.COMPLETED:
                milestone.status = MilestoneStatus.COMPLETED
                logger.info(f"Milestone {milestone.id} ({milestone.name}) completed")

            await self.recompute(project_id)
            await self.fanout.notify_best_effort(
                [project.client_id],
                uploader.id,
                NotificationType.DOCUMENT_UPLOADED,
                f'A deliverable for "{milestone.name}" on {project.name} is ready for your review',
                RelatedRef.document(document.id),
            )
            await commit_session(self.session)

        result = await self.session.execute(
            select(Document)
            .options(
                selectinload(Document.uploader),
                selectinload(Document.comments).selectinload(DocumentComment.author),
            )
            .where(Document.id == document.id)
            .execution_options(populate_existing=True)
        )
        return DeliverableResult(
            document=result.scalar_one(),
            project=await self.load_project(project_id),
        )
