"""API routes for projects, milestones, and deliverables."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from ..core import AdminDep, CurrentUserDep, SessionDep
from ..realtime import GatewayDep
from ..schemas import (
    DeliverableUploadResponse,
    DocumentResponse,
    ErrorResponse,
    MilestoneCreate,
    ProjectCreate,
    ProjectMemberAdd,
    ProjectResponse,
)
from ..services import (
    BaseStorageProvider,
    DocumentService,
    NotFoundError,
    NotificationFanout,
    ProjectRegistry,
    discard_on_error,
    get_storage_provider,
)

router = APIRouter(
    prefix="/projects",
    tags=["projects"],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)


def get_project_registry(session: SessionDep, gateway: GatewayDep) -> ProjectRegistry:
    return ProjectRegistry(session, NotificationFanout(session, gateway))


ProjectRegistryDep = Annotated[ProjectRegistry, Depends(get_project_registry)]
StorageDep = Annotated[BaseStorageProvider, Depends(get_storage_provider)]


# =============================================================================
# PROJECTS
# =============================================================================


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    current_user: AdminDep,
    registry: ProjectRegistryDep,
):
    """Create a project and its group chat (admin only)."""
    return await registry.create_project(current_user.user, data)


@router.get("", response_model=list[ProjectResponse])
async def list_projects(current_user: CurrentUserDep, registry: ProjectRegistryDep):
    return await registry.list_projects(current_user.user)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: UUID,
    current_user: CurrentUserDep,
    registry: ProjectRegistryDep,
):
    return await registry.get_project(project_id, current_user.user)


@router.post("/{project_id}/members", response_model=ProjectResponse)
async def add_team_member(
    project_id: UUID,
    data: ProjectMemberAdd,
    current_user: AdminDep,
    registry: ProjectRegistryDep,
):
    """Add a team member; also joins them to the project chat."""
    return await registry.add_team_member(project_id, data.user_id, current_user.user, data.role)


# =============================================================================
# MILESTONES
# =============================================================================


@router.post("/{project_id}/milestones", response_model=ProjectResponse)
async def add_milestone(
    project_id: UUID,
    data: MilestoneCreate,
    current_user: AdminDep,
    registry: ProjectRegistryDep,
):
    return await registry.add_milestone(
        project_id, data.name, current_user.user, data.status, data.is_enabled
    )


@router.post(
    "/{project_id}/milestones/{milestone_id}/upload",
    response_model=DeliverableUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_milestone_deliverable(
    project_id: UUID,
    milestone_id: UUID,
    current_user: AdminDep,
    registry: ProjectRegistryDep,
    storage: StorageDep,
    file: UploadFile = File(...),
    name: str | None = Form(None),
    notes: str | None = Form(None),
):
    """Upload a milestone's final deliverable (multipart, one file).

    Completes the milestone and recomputes project progress.
    """
    project = await registry.get_project(project_id)
    if project.milestone(milestone_id) is None:
        # Checked before the upload so a bad id stores nothing
        raise NotFoundError("Milestone not found on this project")
    stored = await storage.upload(
        f"deliverables/{project_id}", await file.read(), file.filename, file.content_type
    )
    async with discard_on_error(storage, stored):
        result = await registry.progress.upload_milestone_deliverable(
            project_id, milestone_id, current_user.user, stored, name or file.filename, notes
        )
    return DeliverableUploadResponse(
        document=DocumentResponse.model_validate(result.document),
        project=ProjectResponse.model_validate(result.project),
    )


# =============================================================================
# DOCUMENTS
# =============================================================================


@router.get("/{project_id}/documents", response_model=list[DocumentResponse])
async def list_project_documents(
    project_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
    registry: ProjectRegistryDep,
    milestone_id: UUID | None = Query(None),
):
    """Project documents, newest first."""
    await registry.get_project(project_id, current_user.user)
    return await DocumentService(session).list_documents(project_id, milestone_id)
