"""Send path shared by the HTTP API and the realtime channel.

Per chat: persist the message and its notifications, commit, then broadcast
to the chat room and push the notifications. The whole sequence runs under
the chat's lock so listeners see messages in commit order. Nothing after
the commit can turn a stored message into a reported failure.
"""

import logging
from functools import partial
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.database import after_commit, commit_session
from ..models import ChatMember, Message, NotificationType, RelatedRef
from ..realtime.gateway import RealtimeGateway, chat_room
from ..schemas.messages import MessageResponse
from .errors import ValidationError
from .messages import MessageStore
from .notifications import NotificationFanout

logger = logging.getLogger(__name__)
settings = get_settings()

MESSAGE_RECEIVED = "message received"


def message_preview(message: Message) -> str:
    """Notification text for a new chat message."""
    if message.content:
        limit = settings.notification_preview_length
        text = message.content if len(message.content) <= limit else message.content[:limit] + "..."
        return f"{message.sender.name}: {text}"
    return f"{message.sender.name} sent an attachment"


class ChatMessenger:
    def __init__(self, session: AsyncSession, gateway: RealtimeGateway):
        self.session = session
        self.gateway = gateway
        self.store = MessageStore(session)
        self.fanout = NotificationFanout(session, gateway)

    async def send(
        self,
        sender_id: UUID,
        chat_id: UUID | None,
        content: str | None = None,
        attachments: list | None = None,
        reply_to: UUID | None = None,
    ) -> MessageResponse:
        """Store, broadcast, and notify. Returns the broadcast payload."""
        if chat_id is None:
            raise ValidationError("chat_id is required")

        async with self.gateway.chat_lock(chat_id):
            message = await self.store.post_message(
                sender_id, chat_id, content, attachments, reply_to
            )
            response = MessageResponse.from_model(message)
            after_commit(
                self.session,
                partial(self._broadcast, chat_id, message.id, response.model_dump(mode="json")),
            )

            recipients = await self._other_members(chat_id, sender_id)
            await self.fanout.notify_best_effort(
                recipients,
                sender_id,
                NotificationType.MESSAGE,
                message_preview(message),
                RelatedRef.chat(chat_id),
            )
            await commit_session(self.session)

        return response

    async def _broadcast(self, chat_id: UUID, message_id: UUID, payload: dict) -> None:
        delivered = await self.gateway.emit(chat_room(chat_id), MESSAGE_RECEIVED, payload)
        logger.debug(f"Message {message_id} delivered to {delivered} connection(s)")

    async def _other_members(self, chat_id: UUID, sender_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(ChatMember.user_id)
            .where(ChatMember.chat_id == chat_id, ChatMember.user_id != sender_id)
            .order_by(ChatMember.position)
        )
        return list(result.scalars().all())
