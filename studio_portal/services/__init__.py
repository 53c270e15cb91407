"""Business logic services."""

from .chats import ChatRegistry, direct_chat_key
from .documents import DocumentService
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PortalError,
    UpstreamError,
    ValidationError,
)
from .messages import MessageStore
from .messaging import ChatMessenger
from .notifications import NotificationFanout
from .progress import DeliverableResult, ProgressAggregator, progress_percent
from .projects import ProjectRegistry
from .storage import (
    BaseStorageProvider,
    LocalStorageProvider,
    StoredFile,
    detect_file_type,
    discard_on_error,
    get_storage_provider,
)
from .tasks import ReviewOutcome, SubmissionInput, TaskLifecycleEngine

__all__ = [
    # Messaging
    "ChatMessenger",
    "ChatRegistry",
    "MessageStore",
    "NotificationFanout",
    "direct_chat_key",
    # Project work
    "DeliverableResult",
    "DocumentService",
    "ProgressAggregator",
    "ProjectRegistry",
    "ReviewOutcome",
    "SubmissionInput",
    "TaskLifecycleEngine",
    "progress_percent",
    # Storage
    "BaseStorageProvider",
    "LocalStorageProvider",
    "StoredFile",
    "detect_file_type",
    "discard_on_error",
    "get_storage_provider",
    # Errors
    "ConflictError",
    "ForbiddenError",
    "InvalidTransitionError",
    "NotFoundError",
    "PortalError",
    "UpstreamError",
    "ValidationError",
]
