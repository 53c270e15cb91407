"""Pydantic schemas for project documents."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import DocumentStatus, DocumentType
from .base import PortalBaseModel, UserRef


class StoredFileInfo(PortalBaseModel):
    """Metadata returned by the storage provider."""

    id: str
    url: str
    format: str | None = None
    size: int = 0
    content_type: str | None = None


class DocumentCommentCreate(PortalBaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class DocumentCommentResponse(PortalBaseModel):
    id: UUID
    author: UserRef
    text: str
    created_at: datetime


class DocumentResponse(PortalBaseModel):
    id: UUID
    name: str
    project_id: UUID
    milestone_id: UUID
    uploader: UserRef
    file: StoredFileInfo
    type: DocumentType
    version: int
    notes: str | None = None
    status: DocumentStatus
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    comments: list[DocumentCommentResponse] = []
    created_at: datetime


class DocumentStatusUpdate(PortalBaseModel):
    status: DocumentStatus
    notes: str | None = Field(default=None, max_length=5000)
