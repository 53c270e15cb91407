"""Pydantic schemas for projects, milestones, and team membership."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import MilestoneStatus, ProjectStatus
from .base import PortalBaseModel, UserRef
from .documents import DocumentResponse


# =============================================================================
# MILESTONES
# =============================================================================


class MilestoneCreate(PortalBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    status: MilestoneStatus = MilestoneStatus.PENDING
    is_enabled: bool = True


class MilestoneResponse(PortalBaseModel):
    id: UUID
    name: str
    status: MilestoneStatus
    is_enabled: bool
    position: int


# =============================================================================
# PROJECTS
# =============================================================================


class ProjectCreate(PortalBaseModel):
    """Schema for creating a project (admin only)."""

    project_no: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    client_id: UUID
    location: str | None = Field(default=None, max_length=255)
    budget: float = Field(default=0, ge=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    team_member_ids: list[UUID] = Field(default_factory=list)
    milestones: list[MilestoneCreate] = Field(default_factory=list)


class ProjectMemberAdd(PortalBaseModel):
    user_id: UUID
    role: str = Field(default="Contributor", max_length=100)


class ProjectMemberResponse(PortalBaseModel):
    user: UserRef
    role: str


class ProjectResponse(PortalBaseModel):
    """Full project with milestones and team."""

    id: UUID
    project_no: str
    name: str
    description: str | None = None
    client: UserRef
    status: ProjectStatus
    location: str | None = None
    budget: float
    start_date: datetime | None = None
    end_date: datetime | None = None
    overall_progress: int
    milestones: list[MilestoneResponse]
    members: list[ProjectMemberResponse]
    created_at: datetime
    updated_at: datetime | None = None


class DeliverableUploadResponse(PortalBaseModel):
    """The stored deliverable and the project after progress recompute."""

    document: DocumentResponse
    project: ProjectResponse
