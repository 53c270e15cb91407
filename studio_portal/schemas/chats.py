"""Pydantic schemas for chats."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import Chat
from .base import PortalBaseModel, UserRef


class DirectChatCreate(PortalBaseModel):
    """Open (or fetch) the 1:1 chat with another user."""

    user_id: UUID
    project_id: UUID | None = None


class GroupChatCreate(PortalBaseModel):
    """Create a named group chat."""

    name: str = Field(..., min_length=1, max_length=255)
    member_ids: list[UUID] = Field(
        ...,
        description="Other participants; the creator is added automatically",
    )
    project_id: UUID | None = None


class ChatMemberAdd(PortalBaseModel):
    user_id: UUID


class LatestMessage(PortalBaseModel):
    """Sidebar preview of the most recent message."""

    id: UUID
    sender_id: UUID
    content: str | None = None
    created_at: datetime


class ChatResponse(PortalBaseModel):
    """A chat with its members and latest message."""

    id: UUID
    chat_name: str
    is_group_chat: bool
    members: list[UserRef]
    group_admin: UserRef | None = None
    project_id: UUID | None = None
    latest_message: LatestMessage | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, chat: Chat) -> "ChatResponse":
        latest = chat.latest_message
        return cls(
            id=chat.id,
            chat_name=chat.chat_name,
            is_group_chat=chat.is_group_chat,
            members=[UserRef.model_validate(m.user) for m in chat.members],
            group_admin=UserRef.model_validate(chat.group_admin) if chat.group_admin else None,
            project_id=chat.project_id,
            latest_message=LatestMessage.model_validate(latest) if latest else None,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )
