"""Notification fan-out.

One Notification row per recipient for every domain event. Producers call
``notify_best_effort`` so a failing notification store never fails the
operation that triggered it. Live pushes wait for the transaction to commit.
"""

import logging
from collections.abc import Iterable
from functools import partial
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import get_settings
from ..core.database import after_commit
from ..models import Notification, NotificationType, RelatedRef, User, UserRole
from .errors import ForbiddenError, NotFoundError, UpstreamError

if TYPE_CHECKING:
    from ..realtime.gateway import RealtimeGateway

logger = logging.getLogger(__name__)
settings = get_settings()


def notification_payload(notification: Notification) -> dict:
    """Event body pushed to the recipient's personal room."""
    return {
        "id": notification.id,
        "type": notification.type,
        "message": notification.message,
        "sender_id": notification.sender_id,
        "related_model": notification.related_model,
        "related_id": notification.related_id,
        "is_read": notification.is_read,
        "created_at": notification.created_at,
    }


class NotificationFanout:
    """Creates, lists, and updates per-recipient notifications."""

    def __init__(self, session: AsyncSession, gateway: "RealtimeGateway | None" = None):
        self.session = session
        self.gateway = gateway

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def notify(
        self,
        recipients: Iterable[UUID],
        sender_id: UUID | None,
        type: NotificationType,
        message: str,
        related: RelatedRef | None = None,
    ) -> list[Notification]:
        """Create one notification per distinct recipient.

        Runs in a savepoint: on failure nothing is written and the caller's
        transaction is left intact. Raises UpstreamError.
        """
        recipient_ids = list(dict.fromkeys(recipients))
        if not recipient_ids:
            return []

        try:
            async with self.session.begin_nested():
                notifications = [
                    Notification(
                        recipient_id=recipient_id,
                        sender_id=sender_id,
                        type=type,
                        message=message,
                        related_model=related.model if related else None,
                        related_id=related.id if related else None,
                    )
                    for recipient_id in recipient_ids
                ]
                self.session.add_all(notifications)
                await self.session.flush()
        except SQLAlchemyError as e:
            raise UpstreamError(f"Could not store {type.value} notifications") from e

        logger.info(f"Created {len(notifications)} {type.value} notification(s)")
        if self.gateway is not None:
            after_commit(self.session, partial(self._push, notifications))
        return notifications

    async def notify_best_effort(
        self,
        recipients: Iterable[UUID],
        sender_id: UUID | None,
        type: NotificationType,
        message: str,
        related: RelatedRef | None = None,
    ) -> list[Notification]:
        """Like notify, but logs and returns [] instead of raising."""
        try:
            return await self.notify(recipients, sender_id, type, message, related)
        except UpstreamError as e:
            logger.warning(f"Notification fan-out failed, continuing: {e}")
            return []

    async def _push(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            try:
                await self.gateway.emit_to_user(
                    notification.recipient_id,
                    "notification",
                    notification_payload(notification),
                )
            except Exception:
                logger.exception(f"Live push failed for notification {notification.id}")

    async def admin_ids(self, exclude: UUID | None = None) -> list[UUID]:
        """Ids of every admin, optionally minus one."""
        query = select(User.id).where(User.role == UserRole.ADMIN).order_by(User.created_at)
        if exclude is not None:
            query = query.where(User.id != exclude)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # =========================================================================
    # READ STATE
    # =========================================================================

    async def list_unread(
        self,
        user_id: UUID,
        limit: int | None = None,
    ) -> tuple[int, list[Notification]]:
        """Unread count plus the newest unread notifications."""
        where = (Notification.recipient_id == user_id, Notification.is_read.is_(False))

        count = await self.session.scalar(
            select(func.count()).select_from(Notification).where(*where)
        )
        result = await self.session.execute(
            select(Notification)
            .options(selectinload(Notification.sender))
            .where(*where)
            .order_by(Notification.created_at.desc())
            .limit(limit or settings.notification_page_size)
        )
        return count or 0, list(result.scalars().all())

    async def list_notifications(
        self,
        user_id: UUID,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Notification]:
        result = await self.session.execute(
            select(Notification)
            .options(selectinload(Notification.sender))
            .where(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit or settings.notification_page_size)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def _get_owned(self, notification_id: UUID, user_id: UUID) -> Notification:
        result = await self.session.execute(
            select(Notification)
            .options(selectinload(Notification.sender))
            .where(Notification.id == notification_id)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.recipient_id != user_id:
            raise ForbiddenError("Not the recipient of this notification")
        return notification

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        notification.is_read = True
        await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(Notification).where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        unread = list(result.scalars().all())
        for notification in unread:
            notification.is_read = True
        await self.session.flush()
        return len(unread)

    async def delete(self, notification_id: UUID, user_id: UUID) -> None:
        notification = await self._get_owned(notification_id, user_id)
        await self.session.delete(notification)
        await self.session.flush()
