"""Chat registry: direct and group chats and their membership."""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.database import commit_session
from ..core.locks import KeyedLock
from ..models import Chat, ChatMember, Project, User
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Per (member pair, project) lock for direct-chat creation
direct_chat_lock = KeyedLock()


def direct_chat_key(user_a: UUID, user_b: UUID, project_id: UUID | None = None) -> str:
    """Order-independent identity of a 1:1 chat."""
    first, second = sorted((str(user_a), str(user_b)))
    return f"{first}:{second}:{project_id or '-'}"


class ChatRegistry:
    """Owns Chat rows, their members, and the latest-message pointer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _chat_query(self):
        return (
            select(Chat)
            .options(
                selectinload(Chat.members).selectinload(ChatMember.user),
                selectinload(Chat.group_admin),
                selectinload(Chat.latest_message),
            )
            .execution_options(populate_existing=True)
        )

    async def _find_direct(self, key: str) -> Chat | None:
        result = await self.session.execute(
            self._chat_query().where(Chat.direct_key == key)
        )
        return result.scalar_one_or_none()

    async def _require_users(self, user_ids: Iterable[UUID]) -> None:
        ids = set(user_ids)
        found = await self.session.scalar(
            select(func.count()).select_from(User).where(User.id.in_(ids))
        )
        if found != len(ids):
            raise NotFoundError("One or more users not found")

    # =========================================================================
    # LOOKUP
    # =========================================================================

    async def get_chat(self, chat_id: UUID, user_id: UUID | None = None) -> Chat:
        """Fetch a chat; when user_id is given it must be a member."""
        result = await self.session.execute(self._chat_query().where(Chat.id == chat_id))
        chat = result.scalar_one_or_none()
        if chat is None:
            raise NotFoundError("Chat not found")
        if user_id is not None and not chat.has_member(user_id):
            raise ForbiddenError("Not a member of this chat")
        return chat

    async def list_chats(self, user_id: UUID, project_id: UUID | None = None) -> list[Chat]:
        """Chats containing user_id, most recently active first."""
        query = (
            self._chat_query()
            .join(ChatMember, ChatMember.chat_id == Chat.id)
            .where(ChatMember.user_id == user_id)
            .order_by(func.coalesce(Chat.updated_at, Chat.created_at).desc())
        )
        if project_id is not None:
            query = query.where(Chat.project_id == project_id)
        result = await self.session.execute(query)
        return list(result.scalars().unique().all())

    async def get_project_chat(self, project_id: UUID) -> Chat | None:
        """The group chat provisioned with the project."""
        result = await self.session.execute(
            self._chat_query()
            .where(Chat.project_id == project_id, Chat.is_group_chat.is_(True))
            .order_by(Chat.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # CREATION
    # =========================================================================

    async def get_or_create_direct_chat(
        self,
        requester_id: UUID,
        other_user_id: UUID,
        project_id: UUID | None = None,
    ) -> Chat:
        """Return the 1:1 chat for this pair (and project), creating it once.

        Creation is serialized per key in-process and backed by the unique
        direct_key column across processes; a losing insert re-fetches the
        winner. The new chat is committed before the lock is released.
        """
        if requester_id == other_user_id:
            raise ValidationError("Cannot open a chat with yourself")

        key = direct_chat_key(requester_id, other_user_id, project_id)
        async with direct_chat_lock(key):
            chat = await self._find_direct(key)
            if chat is not None:
                return chat

            other = await self.session.get(User, other_user_id)
            if other is None:
                raise NotFoundError("User not found")
            if project_id is not None and await self.session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")

            chat = Chat(
                chat_name="direct",
                is_group_chat=False,
                project_id=project_id,
                direct_key=key,
                members=[
                    ChatMember(user_id=requester_id, position=0),
                    ChatMember(user_id=other_user_id, position=1),
                ],
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(chat)
                    await self.session.flush()
            except IntegrityError:
                logger.info(f"Direct chat {key} already created elsewhere, re-fetching")
                existing = await self._find_direct(key)
                if existing is None:
                    raise ConflictError("Direct chat creation conflicted")
                return existing

            await commit_session(self.session)
            logger.info(f"Created direct chat {chat.id} ({key})")
            return await self.get_chat(chat.id)

    async def create_group_chat(
        self,
        creator_id: UUID,
        member_ids: Iterable[UUID],
        name: str,
        project_id: UUID | None = None,
    ) -> Chat:
        """Create a group chat; the creator becomes member and group admin."""
        others = [m for m in dict.fromkeys(member_ids) if m != creator_id]
        if len(others) < 2:
            raise ValidationError("A group chat needs at least 2 other members")
        if not name or not name.strip():
            raise ValidationError("Group chat name is required")

        await self._require_users(others)
        if project_id is not None and await self.session.get(Project, project_id) is None:
            raise NotFoundError("Project not found")

        chat = self._group_chat(name.strip(), creator_id, [creator_id, *others], project_id)
        self.session.add(chat)
        await self.session.flush()
        logger.info(f"Created group chat {chat.id} with {len(others) + 1} members")
        return await self.get_chat(chat.id)

    async def provision_project_chat(
        self,
        project: Project,
        creator_id: UUID,
        member_ids: Iterable[UUID],
    ) -> Chat:
        """Group chat for a new project: creator, client, and team."""
        members = list(dict.fromkeys([creator_id, *member_ids]))
        chat = self._group_chat(project.name, creator_id, members, project.id)
        self.session.add(chat)
        await self.session.flush()
        logger.info(f"Provisioned chat {chat.id} for project {project.project_no}")
        return await self.get_chat(chat.id)

    @staticmethod
    def _group_chat(
        name: str,
        admin_id: UUID,
        member_ids: list[UUID],
        project_id: UUID | None,
    ) -> Chat:
        return Chat(
            chat_name=name,
            is_group_chat=True,
            group_admin_id=admin_id,
            project_id=project_id,
            members=[
                ChatMember(user_id=user_id, position=i)
                for i, user_id in enumerate(member_ids)
            ],
        )

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    async def add_member(self, chat_id: UUID, user_id: UUID) -> Chat:
        """Add a user to a group chat. No-op if already a member."""
        chat = await self.get_chat(chat_id)
        if chat.has_member(user_id):
            return chat
        if not chat.is_group_chat:
            raise ValidationError("Direct chats always have exactly two members")
        if await self.session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        try:
            async with self.session.begin_nested():
                self.session.add(
                    ChatMember(chat_id=chat.id, user_id=user_id, position=len(chat.members))
                )
                await self.session.flush()
        except IntegrityError:
            logger.debug(f"User {user_id} joined chat {chat.id} concurrently")
        else:
            logger.info(f"Added user {user_id} to chat {chat.id}")

        return await self.get_chat(chat.id)
