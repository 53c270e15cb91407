"""Pydantic schemas for tasks and the review workflow."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import Field, model_validator

from ..models import TaskPriority, TaskStatus
from .base import PortalBaseModel, UserRef


class ReviewDecision(str, Enum):
    """Admin verdict on a submitted task."""

    APPROVED = "Approved"
    REJECTED = "Rejected"


class QuickAction(str, Enum):
    """Self-service status shortcuts available to the assignee."""

    WIP = "Wip"
    DONE = "Done"
    DISPUTE = "Dispute"


class TaskCreate(PortalBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    project_id: UUID
    milestone_id: UUID
    assigned_to: UUID | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    start_date: datetime | None = None
    end_date: datetime | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "TaskCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TaskUpdate(PortalBaseModel):
    """Partial edit; only the fields sent are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    milestone_id: UUID | None = None
    assigned_to: UUID | None = None
    priority: TaskPriority | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "TaskUpdate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SubmissionInfo(PortalBaseModel):
    """What the assignee handed in for review."""

    doc_name: str
    doc_type: str | None = None
    notes: str | None = None
    file: dict
    submitted_by: UUID
    submitted_at: datetime


class TaskReview(PortalBaseModel):
    decision: ReviewDecision
    feedback: str | None = Field(default=None, max_length=5000)


class TaskStatusUpdate(PortalBaseModel):
    status: QuickAction


class TaskResponse(PortalBaseModel):
    id: UUID
    name: str
    description: str | None = None
    project_id: UUID
    milestone_id: UUID
    assignee: UserRef | None = None
    status: TaskStatus
    priority: TaskPriority
    start_date: datetime | None = None
    end_date: datetime | None = None
    submission: SubmissionInfo | None = None
    admin_feedback: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class TaskReviewResponse(PortalBaseModel):
    """Review outcome. milestone_ready means every task in the milestone is done."""

    task: TaskResponse
    milestone_ready: bool = False
