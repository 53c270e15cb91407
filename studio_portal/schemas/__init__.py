"""Studio Portal API Schemas.

Schemas are organized by domain:
- base: common config, errors, user references
- chats / messages: messaging
- notifications: fan-out records
- projects / documents / tasks: project work
"""

from .base import (
    ErrorDetail,
    ErrorResponse,
    PortalBaseModel,
    TimestampMixin,
    UserRef,
    UserResponse,
)
from .chats import (
    ChatMemberAdd,
    ChatResponse,
    DirectChatCreate,
    GroupChatCreate,
    LatestMessage,
)
from .documents import (
    DocumentCommentCreate,
    DocumentCommentResponse,
    DocumentResponse,
    DocumentStatusUpdate,
    StoredFileInfo,
)
from .messages import (
    Attachment,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    ReplyPreview,
)
from .notifications import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadNotifications,
)
from .projects import (
    DeliverableUploadResponse,
    MilestoneCreate,
    MilestoneResponse,
    ProjectCreate,
    ProjectMemberAdd,
    ProjectMemberResponse,
    ProjectResponse,
)
from .tasks import (
    QuickAction,
    ReviewDecision,
    SubmissionInfo,
    TaskCreate,
    TaskResponse,
    TaskReview,
    TaskReviewResponse,
    TaskStatusUpdate,
    TaskUpdate,
)

__all__ = [
    # Base
    "ErrorDetail",
    "ErrorResponse",
    "PortalBaseModel",
    "TimestampMixin",
    "UserRef",
    "UserResponse",
    # Chats
    "ChatMemberAdd",
    "ChatResponse",
    "DirectChatCreate",
    "GroupChatCreate",
    "LatestMessage",
    # Messages
    "Attachment",
    "MarkReadResponse",
    "MessageCreate",
    "MessageResponse",
    "ReplyPreview",
    # Notifications
    "MarkAllReadResponse",
    "NotificationResponse",
    "UnreadNotifications",
    # Projects
    "DeliverableUploadResponse",
    "MilestoneCreate",
    "MilestoneResponse",
    "ProjectCreate",
    "ProjectMemberAdd",
    "ProjectMemberResponse",
    "ProjectResponse",
    # Documents
    "DocumentCommentCreate",
    "DocumentCommentResponse",
    "DocumentResponse",
    "DocumentStatusUpdate",
    "StoredFileInfo",
    # Tasks
    "QuickAction",
    "ReviewDecision",
    "SubmissionInfo",
    "TaskCreate",
    "TaskResponse",
    "TaskReview",
    "TaskReviewResponse",
    "TaskStatusUpdate",
    "TaskUpdate",
]
