"""Pydantic schemas for notifications."""

from datetime import datetime
from uuid import UUID

from .base import PortalBaseModel, UserRef
from ..models import NotificationType, RelatedModel


class NotificationResponse(PortalBaseModel):
    id: UUID
    type: NotificationType
    message: str
    sender: UserRef | None = None
    related_model: RelatedModel | None = None
    related_id: UUID | None = None
    is_read: bool
    created_at: datetime


class UnreadNotifications(PortalBaseModel):
    """Unread count plus the unread items, newest first."""

    count: int
    items: list[NotificationResponse]


class MarkAllReadResponse(PortalBaseModel):
    updated: int
