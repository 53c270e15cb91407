"""Project documents and their client review status."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import (
    Document,
    DocumentComment,
    DocumentStatus,
    NotificationType,
    Project,
    RelatedRef,
    User,
    utcnow,
)
from .errors import ForbiddenError, NotFoundError, ValidationError
from .notifications import NotificationFanout
from .projects import can_view_project

logger = logging.getLogger(__name__)


def with_comments():
    return selectinload(Document.comments).selectinload(DocumentComment.author)


class DocumentService:
    def __init__(self, session: AsyncSession, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)

    async def get_document(self, document_id: UUID) -> Document:
        result = await self.session.execute(
            select(Document)
            .options(
                selectinload(Document.uploader),
                selectinload(Document.project),
                with_comments(),
            )
            .where(Document.id == document_id)
            .execution_options(populate_existing=True)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document not found")
        return document

    async def list_documents(
        self,
        project_id: UUID,
        milestone_id: UUID | None = None,
    ) -> list[Document]:
        query = (
            select(Document)
            .options(selectinload(Document.uploader), with_comments())
            .where(Document.project_id == project_id)
            .order_by(Document.created_at.desc())
        )
        if milestone_id is not None:
            query = query.where(Document.milestone_id == milestone_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_status(
        self,
        document_id: UUID,
        actor: User,
        status: DocumentStatus,
        notes: str | None = None,
    ) -> Document:
        """Client or admin verdict on a document.

        A client's verdict is sent to every admin as an approval request.
        """
        status = DocumentStatus(status)
        if status == DocumentStatus.PENDING:
            raise ValidationError("A reviewed document cannot go back to Pending")

        document = await self.get_document(document_id)
        is_client = document.project.client_id == actor.id
        if not (actor.is_admin or is_client):
            raise ForbiddenError("Only the project's client or an admin can review documents")

        document.status = status
        if notes:
            document.notes = notes
        if status == DocumentStatus.APPROVED:
            document.approved_by = actor.id
            document.approved_at = utcnow()
        await self.session.flush()
        logger.info(f"Document {document.id} marked {status.value} by {actor.id}")

        if is_client and not actor.is_admin:
            await self.fanout.notify_best_effort(
                await self.fanout.admin_ids(),
                actor.id,
                NotificationType.APPROVAL_REQUEST,
                f'{actor.name} marked "{document.name}" as {status.value}',
                RelatedRef.document(document.id),
            )
        return await self.get_document(document.id)

    async def add_comment(self, document_id: UUID, actor: User, text: str) -> Document:
        """Append a remark; anyone who can see the project may comment."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text is required")

        document = await self.get_document(document_id)
        result = await self.session.execute(
            select(Project)
            .options(selectinload(Project.members))
            .where(Project.id == document.project_id)
        )
        if not can_view_project(result.scalar_one(), actor):
            raise ForbiddenError("Not a member of this document's project")

        self.session.add(DocumentComment(document_id=document.id, user_id=actor.id, text=text))
        await self.session.flush()
        logger.info(f"Comment added to document {document.id} by {actor.id}")
        return await self.get_document(document.id)
