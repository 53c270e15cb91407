"""Message store: persistence, history, and read receipts."""

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Chat, ChatMember, Message, MessageRead, utcnow
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MARK_READ_ATTEMPTS = 3


def normalize_attachments(attachments: list | None) -> list[dict]:
    """Attachment dicts reduced to id/url/type."""
    normalized = []
    for attachment in attachments or []:
        if hasattr(attachment, "model_dump"):
            attachment = attachment.model_dump()
        if not attachment.get("url"):
            raise ValidationError("Attachment is missing its url")
        normalized.append({
            "id": str(attachment.get("id") or attachment["url"]),
            "url": attachment["url"],
            "type": attachment.get("type") or "other",
        })
    return normalized


class MessageStore:
    """Owns Message rows and their read receipts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _message_query(self):
        return (
            select(Message)
            .options(
                selectinload(Message.sender),
                selectinload(Message.reads),
                selectinload(Message.reply_to).selectinload(Message.sender),
            )
            .execution_options(populate_existing=True)
        )

    async def _member_chat(self, chat_id: UUID, user_id: UUID) -> Chat:
        chat = await self.session.get(Chat, chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        is_member = await self.session.scalar(
            select(ChatMember.id).where(
                ChatMember.chat_id == chat_id,
                ChatMember.user_id == user_id,
            )
        )
        if is_member is None:
            raise ForbiddenError("Not a member of this chat")
        return chat

    async def _next_seq(self, chat_id: UUID) -> int:
        # Atomic increment; the chat row stays locked until commit
        return await self.session.scalar(
            update(Chat)
            .where(Chat.id == chat_id)
            .values(message_seq=Chat.message_seq + 1)
            .returning(Chat.message_seq)
            .execution_options(synchronize_session=False)
        )

    async def get_message(self, message_id: UUID) -> Message:
        result = await self.session.execute(
            self._message_query().where(Message.id == message_id)
        )
        message = result.scalar_one_or_none()
        if message is None:
            raise NotFoundError("Message not found")
        return message

    async def post_message(
        self,
        sender_id: UUID,
        chat_id: UUID | None,
        content: str | None = None,
        attachments: list | None = None,
        reply_to: UUID | None = None,
    ) -> Message:
        """Persist a message and move the chat's latest-message pointer.

        The sender is recorded as having read their own message.
        """
        if chat_id is None:
            raise ValidationError("chat_id is required")
        content = content.strip() if content and content.strip() else None
        attachments = normalize_attachments(attachments)
        if content is None and not attachments:
            raise ValidationError("A message needs content or at least one attachment")

        chat = await self._member_chat(chat_id, sender_id)

        if reply_to is not None:
            replied = await self.session.get(Message, reply_to)
            if replied is None or replied.chat_id != chat_id:
                raise NotFoundError("Replied-to message not found in this chat")

        seq = await self._next_seq(chat_id)
        message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            seq=seq,
            content=content,
            attachments=attachments,
            reply_to_id=reply_to,
            reads=[MessageRead(user_id=sender_id)],
        )
        self.session.add(message)
        await self.session.flush()

        chat.latest_message = message
        chat.updated_at = utcnow()
        await self.session.flush()

        logger.info(f"Message {message.id} stored in chat {chat_id}")
        return await self.get_message(message.id)

    async def list_messages(self, chat_id: UUID, user_id: UUID) -> list[Message]:
        """Full history of a chat, oldest first."""
        await self._member_chat(chat_id, user_id)
        result = await self.session.execute(
            self._message_query()
            .where(Message.chat_id == chat_id)
            .order_by(Message.seq)
        )
        return list(result.scalars().all())

    async def mark_read(self, chat_id: UUID, user_id: UUID) -> int:
        """Record user_id as having read every message in the chat.

        Idempotent; returns how many receipts were added.
        """
        await self._member_chat(chat_id, user_id)

        for _ in range(MARK_READ_ATTEMPTS):
            already_read = select(MessageRead.message_id).where(MessageRead.user_id == user_id)
            result = await self.session.execute(
                select(Message.id).where(
                    Message.chat_id == chat_id,
                    Message.id.not_in(already_read),
                )
            )
            unread = list(result.scalars().all())
            if not unread:
                return 0
            try:
                async with self.session.begin_nested():
                    self.session.add_all(
                        MessageRead(message_id=message_id, user_id=user_id)
                        for message_id in unread
                    )
                    await self.session.flush()
            except IntegrityError:
                # Another request marked some of these; recompute
                continue
            logger.debug(f"User {user_id} read {len(unread)} message(s) in chat {chat_id}")
            return len(unread)

        raise ConflictError("Could not record read receipts, try again")
