"""API routes for chat messages."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile, status

from ..core import CurrentUserDep, SessionDep
from ..realtime import GatewayDep
from ..schemas import Attachment, ErrorResponse, MarkReadResponse, MessageCreate, MessageResponse
from ..services import (
    BaseStorageProvider,
    ChatMessenger,
    MessageStore,
    detect_file_type,
    get_storage_provider,
)

router = APIRouter(
    prefix="/messages",
    tags=["messages"],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)

StorageDep = Annotated[BaseStorageProvider, Depends(get_storage_provider)]


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: MessageCreate,
    current_user: CurrentUserDep,
    session: SessionDep,
    gateway: GatewayDep,
):
    """Send a message; it is broadcast live to the chat room."""
    return await ChatMessenger(session, gateway).send(
        current_user.id,
        data.chat_id,
        content=data.content,
        attachments=data.attachments,
        reply_to=data.reply_to,
    )


@router.post("/attachments", response_model=Attachment, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    current_user: CurrentUserDep,
    storage: StorageDep,
    file: UploadFile = File(...),
):
    """Store a file to embed in a later message."""
    content = await file.read()
    stored = await storage.upload(
        "chat-files", content, file.filename, file.content_type
    )
    return Attachment(
        id=stored.id,
        url=stored.url,
        type=detect_file_type(file.filename, file.content_type),
    )


@router.get("/{chat_id}", response_model=list[MessageResponse])
async def list_messages(
    chat_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Full chat history, oldest first."""
    messages = await MessageStore(session).list_messages(chat_id, current_user.id)
    return [MessageResponse.from_model(m) for m in messages]


@router.put("/{chat_id}/read", response_model=MarkReadResponse)
async def mark_chat_read(
    chat_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Mark every message in the chat as read by the caller."""
    marked = await MessageStore(session).mark_read(chat_id, current_user.id)
    return MarkReadResponse(chat_id=chat_id, marked=marked)
