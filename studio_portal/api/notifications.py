"""API routes for notifications."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentUserDep, SessionDep
from ..schemas import (
    ErrorResponse,
    MarkAllReadResponse,
    NotificationResponse,
    UnreadNotifications,
)
from ..services import NotificationFanout

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


def get_fanout(session: SessionDep) -> NotificationFanout:
    return NotificationFanout(session)


FanoutDep = Annotated[NotificationFanout, Depends(get_fanout)]


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    current_user: CurrentUserDep,
    fanout: FanoutDep,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """All notifications for the caller, newest first."""
    return await fanout.list_notifications(current_user.id, limit, offset)


@router.get("/unread", response_model=UnreadNotifications)
async def list_unread(current_user: CurrentUserDep, fanout: FanoutDep):
    count, items = await fanout.list_unread(current_user.id)
    return UnreadNotifications(
        count=count,
        items=[NotificationResponse.model_validate(n) for n in items],
    )


@router.put("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(current_user: CurrentUserDep, fanout: FanoutDep):
    updated = await fanout.mark_all_read(current_user.id)
    return MarkAllReadResponse(updated=updated)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    fanout: FanoutDep,
):
    return await fanout.mark_read(notification_id, current_user.id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: UUID,
    current_user: CurrentUserDep,
    fanout: FanoutDep,
):
    await fanout.delete(notification_id, current_user.id)
