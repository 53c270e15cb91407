"""
Task Lifecycle Engine.

    Pending -> In Progress -> Waiting for Approval -> Completed
    Waiting for Approval --reject--> In Progress
    any open state --dispute--> On Hold

Completed is terminal. A submission is required to enter Waiting for
Approval. Approving the last open task of a milestone only reports the
milestone as ready; completing it is left to the deliverable upload.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import (
    NotificationType,
    Project,
    RelatedRef,
    Task,
    TaskPriority,
    TaskStatus,
    User,
    utcnow,
)
from ..schemas.tasks import QuickAction, ReviewDecision, TaskCreate, TaskUpdate
from .errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from .notifications import NotificationFanout
from .projects import can_view_project
from .storage import StoredFile

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SubmissionInput:
    """What an assignee hands in for review."""
    file: StoredFile | None
    doc_name: str | None = None
    doc_type: str | None = None
    notes: str | None = None


@dataclass
class ReviewOutcome:
    task: Task
    milestone_ready: bool = False


def as_utc(value: datetime | None) -> datetime | None:
    """Stored datetimes may come back naive (SQLite); they are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


QUICK_ACTION_STATUS = {
    QuickAction.WIP: TaskStatus.IN_PROGRESS,
    QuickAction.DONE: TaskStatus.COMPLETED,
    QuickAction.DISPUTE: TaskStatus.ON_HOLD,
}

# States a quick action may start from
QUICK_ACTION_SOURCES = {
    QuickAction.WIP: {TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD},
    QuickAction.DONE: {
        TaskStatus.PENDING,
        TaskStatus.IN_PROGRESS,
        TaskStatus.WAITING_FOR_APPROVAL,
        TaskStatus.ON_HOLD,
    },
    QuickAction.DISPUTE: {
        TaskStatus.PENDING,
        TaskStatus.IN_PROGRESS,
        TaskStatus.WAITING_FOR_APPROVAL,
        TaskStatus.ON_HOLD,
    },
}


# =============================================================================
# ENGINE
# =============================================================================


class TaskLifecycleEngine:
    def __init__(self, session: AsyncSession, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)

    async def get_task(self, task_id: UUID) -> Task:
        result = await self.session.execute(
            select(Task)
            .options(selectinload(Task.assignee), selectinload(Task.milestone))
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def get_visible_task(self, task_id: UUID, user: User) -> Task:
        """A task, provided the user can see its project."""
        task = await self.get_task(task_id)
        result = await self.session.execute(
            select(Project)
            .options(selectinload(Project.members))
            .where(Project.id == task.project_id)
        )
        if not can_view_project(result.scalar_one(), user):
            raise ForbiddenError("Not a member of this task's project")
        return task

    @staticmethod
    def check_submitter(task: Task, submitter: User) -> None:
        if task.assigned_to != submitter.id:
            raise ForbiddenError("Only the assignee can submit this task")

    # =========================================================================
    # REGISTRY
    # =========================================================================

    async def create_task(self, actor: User, data: TaskCreate) -> Task:
        """Create a Pending task inside one of the project's milestones."""
        result = await self.session.execute(
            select(Project)
            .options(selectinload(Project.milestones), selectinload(Project.members))
            .where(Project.id == data.project_id)
        )
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project not found")
        if not actor.is_admin and not any(m.user_id == actor.id for m in project.members):
            raise ForbiddenError("Only admins and project team members can create tasks")
        if project.milestone(data.milestone_id) is None:
            raise NotFoundError("Milestone not found on this project")
        if data.assigned_to is not None and await self.session.get(User, data.assigned_to) is None:
            raise NotFoundError("Assignee not found")

        task = Task(
            name=data.name,
            description=data.description,
            project_id=data.project_id,
            milestone_id=data.milestone_id,
            assigned_to=data.assigned_to,
            priority=data.priority,
            start_date=data.start_date,
            end_date=data.end_date,
            status=TaskStatus.PENDING,
            created_by=actor.id,
        )
        self.session.add(task)
        await self.session.flush()
        logger.info(f"Task {task.id} created in project {project.project_no}")

        if task.assigned_to is not None and task.assigned_to != actor.id:
            await self.fanout.notify_best_effort(
                [task.assigned_to],
                actor.id,
                NotificationType.TASK_ASSIGNED,
                f'You have been assigned "{task.name}" on {project.name}',
                RelatedRef.task(task.id),
            )
        return await self.get_task(task.id)

    async def update_task(self, task_id: UUID, actor: User, data: TaskUpdate) -> Task:
        """Edit a task's details.

        Admins and the assignee may edit. Only admins may reassign the task
        or move it to another milestone. Status is changed through the
        lifecycle operations, never here.
        """
        task = await self.get_task(task_id)
        if not (actor.is_admin or task.assigned_to == actor.id):
            raise ForbiddenError("Only admins and the assignee can edit this task")

        changes = data.model_dump(exclude_unset=True)
        if not actor.is_admin and {"assigned_to", "milestone_id"} & changes.keys():
            raise ForbiddenError("Only admins can reassign or move a task")

        if "name" in changes and not changes["name"]:
            raise ValidationError("Task name is required")
        if "milestone_id" in changes:
            if changes["milestone_id"] is None:
                raise ValidationError("A task must stay in a milestone")
            project = await self.session.get(
                Project, task.project_id, options=[selectinload(Project.milestones)]
            )
            if project.milestone(changes["milestone_id"]) is None:
                raise NotFoundError("Milestone not found on this project")
        new_assignee = changes.get("assigned_to")
        if new_assignee is not None and await self.session.get(User, new_assignee) is None:
            raise NotFoundError("Assignee not found")

        start = as_utc(changes.get("start_date", task.start_date))
        end = as_utc(changes.get("end_date", task.end_date))
        if start and end and end < start:
            raise ValidationError("end_date must not be before start_date")

        previous_assignee = task.assigned_to
        for field, value in changes.items():
            if field == "priority" and value is not None:
                value = TaskPriority(value)
            setattr(task, field, value)
        await self.session.flush()
        logger.info(f"Task {task.id} updated by {actor.id}: {sorted(changes)}")

        if new_assignee is not None and new_assignee != previous_assignee and new_assignee != actor.id:
            await self.fanout.notify_best_effort(
                [new_assignee],
                actor.id,
                NotificationType.TASK_ASSIGNED,
                f'You have been assigned "{task.name}"',
                RelatedRef.task(task.id),
            )
        return await self.get_task(task.id)

    async def delete_task(self, task_id: UUID, actor: User) -> None:
        if not actor.is_admin:
            raise ForbiddenError("Only admins can delete tasks")
        task = await self.get_task(task_id)
        await self.session.delete(task)
        await self.session.flush()
        logger.info(f"Task {task_id} deleted by {actor.id}")

    async def list_project_tasks(self, project_id: UUID) -> list[Task]:
        result = await self.session.execute(
            select(Task)
            .options(selectinload(Task.assignee))
            .where(Task.project_id == project_id)
            .order_by(Task.start_date.is_(None), Task.start_date, Task.created_at)
        )
        return list(result.scalars().all())

    async def list_my_tasks(self, user_id: UUID) -> list[Task]:
        """Open tasks assigned to the user, soonest due first."""
        result = await self.session.execute(
            select(Task)
            .options(selectinload(Task.assignee))
            .where(Task.assigned_to == user_id, Task.status != TaskStatus.COMPLETED)
            .order_by(Task.end_date.is_(None), Task.end_date, Task.created_at)
        )
        return list(result.scalars().all())

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def submit(
        self,
        task_id: UUID,
        submitter: User,
        payload: SubmissionInput,
    ) -> Task:
        """Hand in work for review: -> Waiting for Approval, admins notified."""
        task = await self.get_task(task_id)
        self.check_submitter(task, submitter)
        if payload.file is None:
            raise ValidationError("Submission requires a document")
        if task.status in (TaskStatus.COMPLETED, TaskStatus.WAITING_FOR_APPROVAL):
            raise InvalidTransitionError(f"Cannot submit a task that is {task.status.value}")

        task.submission = {
            "doc_name": payload.doc_name or task.name,
            "doc_type": payload.doc_type,
            "notes": payload.notes,
            "file": payload.file.to_dict(),
            "submitted_by": str(submitter.id),
            "submitted_at": utcnow().isoformat(),
        }
        task.status = TaskStatus.WAITING_FOR_APPROVAL
        await self.session.flush()
        logger.info(f"Task {task.id} submitted for approval by {submitter.id}")

        await self.fanout.notify_best_effort(
            await self.fanout.admin_ids(),
            submitter.id,
            NotificationType.TASK_SUBMITTED,
            f'{submitter.name} submitted "{task.name}" for approval',
            RelatedRef.task(task.id),
        )
        return await self.get_task(task.id)

    async def review(
        self,
        task_id: UUID,
        reviewer: User,
        decision: ReviewDecision,
        feedback: str | None = None,
    ) -> ReviewOutcome:
        """Approve (-> Completed) or reject (-> In Progress) a submission."""
        if not reviewer.is_admin:
            raise ForbiddenError("Only admins can review tasks")
        task = await self.get_task(task_id)
        if task.status != TaskStatus.WAITING_FOR_APPROVAL:
            raise InvalidTransitionError("Only tasks waiting for approval can be reviewed")

        decision = ReviewDecision(decision)
        if decision == ReviewDecision.APPROVED:
            task.status = TaskStatus.COMPLETED
            if feedback:
                task.admin_feedback = feedback
        else:
            task.status = TaskStatus.IN_PROGRESS
            task.admin_feedback = feedback
        task.reviewed_by = reviewer.id
        task.reviewed_at = utcnow()
        await self.session.flush()
        logger.info(f"Task {task.id} {decision.value.lower()} by {reviewer.id}")

        milestone_ready = False
        if decision == ReviewDecision.APPROVED:
            milestone_ready = await self.milestone_ready(task.project_id, task.milestone_id)
            if milestone_ready:
                logger.info(f"All tasks in milestone {task.milestone_id} are completed")
                await self.fanout.notify_best_effort(
                    await self.fanout.admin_ids(),
                    reviewer.id,
                    NotificationType.APPROVAL_REQUEST,
                    f'All tasks in "{task.milestone.name}" are completed; upload the deliverable to close the milestone',
                    RelatedRef.project(task.project_id),
                )

        if task.assigned_to is not None:
            message = f'Your task "{task.name}" was {decision.value.lower()}'
            if feedback:
                message += f": {feedback}"
            await self.fanout.notify_best_effort(
                [task.assigned_to],
                reviewer.id,
                NotificationType.TASK_REVIEWED,
                message,
                RelatedRef.task(task.id),
            )

        return ReviewOutcome(task=await self.get_task(task.id), milestone_ready=milestone_ready)

    async def update_status(
        self,
        task_id: UUID,
        actor_id: UUID,
        action: QuickAction,
    ) -> Task:
        """Assignee shortcuts: Wip, Done (skips review), Dispute (-> On Hold)."""
        task = await self.get_task(task_id)
        if task.assigned_to != actor_id:
            raise ForbiddenError("Only the assignee can change this task's status")

        action = QuickAction(action)
        if task.status not in QUICK_ACTION_SOURCES[action]:
            raise InvalidTransitionError(
                f"Cannot apply {action.value} to a task that is {task.status.value}"
            )

        previous = task.status
        task.status = QUICK_ACTION_STATUS[action]
        await self.session.flush()
        logger.info(f"Task {task.id} {previous.value} -> {task.status.value} ({action.value})")
        return await self.get_task(task.id)

    async def milestone_ready(self, project_id: UUID, milestone_id: UUID) -> bool:
        """True when the milestone has tasks and none of them is open."""
        await self.session.flush()
        total, open_count = (
            await self.session.execute(
                select(
                    func.count(Task.id),
                    func.count(case((Task.status != TaskStatus.COMPLETED, 1))),
                ).where(Task.project_id == project_id, Task.milestone_id == milestone_id)
            )
        ).one()
        return total > 0 and open_count == 0
