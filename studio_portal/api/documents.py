"""API routes for document review."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core import CurrentUserDep, SessionDep
from ..realtime import GatewayDep
from ..schemas import (
    DocumentCommentCreate,
    DocumentResponse,
    DocumentStatusUpdate,
    ErrorResponse,
)
from ..services import DocumentService, NotificationFanout

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)


def get_document_service(session: SessionDep, gateway: GatewayDep) -> DocumentService:
    return DocumentService(session, NotificationFanout(session, gateway))


DocumentServiceDep = Annotated[DocumentService, Depends(get_document_service)]


@router.put("/{document_id}/status", response_model=DocumentResponse)
async def update_document_status(
    document_id: UUID,
    data: DocumentStatusUpdate,
    current_user: CurrentUserDep,
    service: DocumentServiceDep,
):
    """Approve, reject, or request a revision (project client or admin)."""
    return await service.update_status(document_id, current_user.user, data.status, data.notes)


@router.post(
    "/{document_id}/comments",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_document_comment(
    document_id: UUID,
    data: DocumentCommentCreate,
    current_user: CurrentUserDep,
    service: DocumentServiceDep,
):
    return await service.add_comment(document_id, current_user.user, data.text)
