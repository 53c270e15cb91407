"""Pydantic schemas for chat messages and attachments."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import Message
from .base import PortalBaseModel, UserRef


class Attachment(PortalBaseModel):
    """A stored file embedded in a message."""

    id: str
    url: str
    type: str = "other"


class MessageCreate(PortalBaseModel):
    """Send a message. Needs content, attachments, or both."""

    chat_id: UUID | None = None
    content: str | None = Field(default=None, max_length=10000)
    attachments: list[Attachment] = Field(default_factory=list, max_length=10)
    reply_to: UUID | None = None


class ReplyPreview(PortalBaseModel):
    """The message being replied to, trimmed for display."""

    id: UUID
    sender: UserRef
    content: str | None = None
    has_attachments: bool = False


class MessageResponse(PortalBaseModel):
    """A persisted message with sender, reply preview, and read state."""

    id: UUID
    chat_id: UUID
    sender: UserRef
    content: str | None = None
    attachments: list[Attachment] = []
    reply_to: ReplyPreview | None = None
    read_by: list[UUID] = []
    seq: int
    created_at: datetime

    @classmethod
    def from_model(cls, message: Message) -> "MessageResponse":
        reply = message.reply_to
        return cls(
            id=message.id,
            chat_id=message.chat_id,
            sender=UserRef.model_validate(message.sender),
            content=message.content,
            attachments=[Attachment(**a) for a in message.attachments or []],
            reply_to=ReplyPreview(
                id=reply.id,
                sender=UserRef.model_validate(reply.sender),
                content=reply.content,
                has_attachments=bool(reply.attachments),
            ) if reply else None,
            read_by=[r.user_id for r in message.reads],
            seq=message.seq,
            created_at=message.created_at,
        )


class MarkReadResponse(PortalBaseModel):
    """Result of marking a chat as read."""

    chat_id: UUID
    marked: int
