"""API routes for chats."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentUserDep, SessionDep
from ..schemas import (
    ChatMemberAdd,
    ChatResponse,
    DirectChatCreate,
    ErrorResponse,
    GroupChatCreate,
)
from ..services import ChatRegistry, ForbiddenError

router = APIRouter(
    prefix="/chats",
    tags=["chats"],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


def get_chat_registry(session: SessionDep) -> ChatRegistry:
    return ChatRegistry(session)


ChatRegistryDep = Annotated[ChatRegistry, Depends(get_chat_registry)]


@router.post("", response_model=ChatResponse)
async def access_chat(
    data: DirectChatCreate,
    current_user: CurrentUserDep,
    registry: ChatRegistryDep,
):
    """Open the 1:1 chat with another user, creating it on first contact."""
    chat = await registry.get_or_create_direct_chat(
        current_user.id, data.user_id, data.project_id
    )
    return ChatResponse.from_model(chat)


@router.post("/group", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_group_chat(
    data: GroupChatCreate,
    current_user: CurrentUserDep,
    registry: ChatRegistryDep,
):
    """Create a group chat with at least two other members."""
    chat = await registry.create_group_chat(
        current_user.id, data.member_ids, data.name, data.project_id
    )
    return ChatResponse.from_model(chat)


@router.get("", response_model=list[ChatResponse])
async def list_chats(
    current_user: CurrentUserDep,
    registry: ChatRegistryDep,
    project_id: UUID | None = Query(None, description="Only chats scoped to this project"),
):
    """List the caller's chats, most recently active first."""
    chats = await registry.list_chats(current_user.id, project_id)
    return [ChatResponse.from_model(c) for c in chats]


@router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: UUID,
    current_user: CurrentUserDep,
    registry: ChatRegistryDep,
):
    chat = await registry.get_chat(chat_id, current_user.id)
    return ChatResponse.from_model(chat)


@router.put("/{chat_id}/members", response_model=ChatResponse)
async def add_chat_member(
    chat_id: UUID,
    data: ChatMemberAdd,
    current_user: CurrentUserDep,
    registry: ChatRegistryDep,
):
    """Add a member to a group chat (group admin or portal admin)."""
    chat = await registry.get_chat(chat_id, None if current_user.is_admin else current_user.id)
    if not current_user.is_admin and chat.group_admin_id != current_user.id:
        raise ForbiddenError("Only the group admin can add members")
    chat = await registry.add_member(chat_id, data.user_id)
    return ChatResponse.from_model(chat)
