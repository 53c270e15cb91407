"""API routes for the task lifecycle."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from ..core import CurrentUserDep, SessionDep
from ..realtime import GatewayDep
from ..schemas import (
    ErrorResponse,
    TaskCreate,
    TaskResponse,
    TaskReview,
    TaskReviewResponse,
    TaskStatusUpdate,
    TaskUpdate,
)
from ..services import (
    BaseStorageProvider,
    NotificationFanout,
    ProjectRegistry,
    SubmissionInput,
    TaskLifecycleEngine,
    discard_on_error,
    get_storage_provider,
)

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


def get_engine(session: SessionDep, gateway: GatewayDep) -> TaskLifecycleEngine:
    return TaskLifecycleEngine(session, NotificationFanout(session, gateway))


EngineDep = Annotated[TaskLifecycleEngine, Depends(get_engine)]
StorageDep = Annotated[BaseStorageProvider, Depends(get_storage_provider)]


# =============================================================================
# REGISTRY
# =============================================================================


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    current_user: CurrentUserDep,
    engine: EngineDep,
):
    return await engine.create_task(current_user.user, data)


@router.get("/mine", response_model=list[TaskResponse])
async def list_my_tasks(current_user: CurrentUserDep, engine: EngineDep):
    """Open tasks assigned to the caller."""
    return await engine.list_my_tasks(current_user.id)


@router.get("/project/{project_id}", response_model=list[TaskResponse])
async def list_project_tasks(
    project_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
    engine: EngineDep,
):
    await ProjectRegistry(session).get_project(project_id, current_user.user)
    return await engine.list_project_tasks(project_id)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, current_user: CurrentUserDep, engine: EngineDep):
    return await engine.get_visible_task(task_id, current_user.user)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: UUID,
    data: TaskUpdate,
    current_user: CurrentUserDep,
    engine: EngineDep,
):
    """Edit task details (admin or assignee; reassigning is admin only)."""
    return await engine.update_task(task_id, current_user.user, data)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: UUID, current_user: CurrentUserDep, engine: EngineDep):
    await engine.delete_task(task_id, current_user.user)


# =============================================================================
# TRANSITIONS
# =============================================================================


@router.post("/{task_id}/submit", response_model=TaskResponse)
async def submit_task(
    task_id: UUID,
    current_user: CurrentUserDep,
    engine: EngineDep,
    storage: StorageDep,
    file: UploadFile | None = File(None),
    doc_name: str | None = Form(None),
    doc_type: str | None = Form(None),
    notes: str | None = Form(None),
):
    """Submit work for approval (multipart, one file)."""
    # Nothing reaches storage unless the caller may submit
    engine.check_submitter(await engine.get_task(task_id), current_user.user)
    stored = None
    if file is not None and file.filename:
        stored = await storage.upload(
            "task-submissions", await file.read(), file.filename, file.content_type
        )
        doc_name = doc_name or file.filename
    payload = SubmissionInput(file=stored, doc_name=doc_name, doc_type=doc_type, notes=notes)
    async with discard_on_error(storage, stored):
        return await engine.submit(task_id, current_user.user, payload)


@router.put("/{task_id}/review", response_model=TaskReviewResponse)
async def review_task(
    task_id: UUID,
    data: TaskReview,
    current_user: CurrentUserDep,
    engine: EngineDep,
):
    """Approve or reject a submission (admin only)."""
    outcome = await engine.review(task_id, current_user.user, data.decision, data.feedback)
    return TaskReviewResponse(
        task=TaskResponse.model_validate(outcome.task),
        milestone_ready=outcome.milestone_ready,
    )


@router.put("/{task_id}/status", response_model=TaskResponse)
async def update_task_status(
    task_id: UUID,
    data: TaskStatusUpdate,
    current_user: CurrentUserDep,
    engine: EngineDep,
):
    """Assignee quick actions: Wip, Done, Dispute."""
    return await engine.update_status(task_id, current_user.id, data.status)
