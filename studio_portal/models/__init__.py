"""SQLAlchemy ORM Models for the Studio Portal."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    DocumentStatus,
    DocumentType,
    MilestoneStatus,
    NotificationType,
    ProjectStatus,
    RelatedModel,
    TaskPriority,
    TaskStatus,
    UserRole,
    # Value types
    RelatedRef,
    # Users
    User,
    # Projects
    Milestone,
    Project,
    ProjectMember,
    # Messaging
    Chat,
    ChatMember,
    Message,
    MessageRead,
    # Notifications
    Notification,
    # Work
    Document,
    DocumentComment,
    Task,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "DocumentStatus",
    "DocumentType",
    "MilestoneStatus",
    "NotificationType",
    "ProjectStatus",
    "RelatedModel",
    "TaskPriority",
    "TaskStatus",
    "UserRole",
    "RelatedRef",
    # Models
    "User",
    "Project",
    "ProjectMember",
    "Milestone",
    "Chat",
    "ChatMember",
    "Message",
    "MessageRead",
    "Notification",
    "Task",
    "Document",
    "DocumentComment",
]
