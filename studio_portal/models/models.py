"""SQLAlchemy ORM Models for the Studio Portal.

Projects own their milestone list; chats own their membership; messages own
their read receipts. Everything else references users by id.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


def _values(enum_cls: type[PyEnum]) -> list[str]:
    return [e.value for e in enum_cls]


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    CLIENT = "client"
    TEAM_MEMBER = "team_member"
    ADMIN = "admin"


class ProjectStatus(str, PyEnum):
    ACTIVE = "Active"
    PENDING = "Pending"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    ARCHIVED = "Archived"


class MilestoneStatus(str, PyEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ACTIVE = "Active"


class TaskStatus(str, PyEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    WAITING_FOR_APPROVAL = "Waiting for Approval"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"


class TaskPriority(str, PyEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class DocumentType(str, PyEnum):
    PDF = "PDF"
    DWG = "DWG"
    JPG = "JPG"
    PNG = "PNG"
    DELIVERABLE = "Deliverable"
    OTHER = "Other"


class DocumentStatus(str, PyEnum):
    PENDING = "Pending"
    REVIEW = "Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REVISION_REQUESTED = "Revision Requested"


class NotificationType(str, PyEnum):
    """Closed set of notification kinds."""
    MESSAGE = "Message"
    TASK_ASSIGNED = "Task Assigned"
    TASK_SUBMITTED = "Task Submitted"
    TASK_REVIEWED = "Task Reviewed"
    DOCUMENT_UPLOADED = "Document Uploaded"
    APPROVAL_REQUEST = "Approval Request"


class RelatedModel(str, PyEnum):
    """Entity kinds a notification can point at."""
    TASK = "Task"
    PROJECT = "Project"
    DOCUMENT = "Document"
    FINANCE = "Finance"
    CHAT = "Chat"


@dataclass(frozen=True)
class RelatedRef:
    """Tagged reference to the entity a notification is about."""

    model: RelatedModel
    id: UUID

    @classmethod
    def task(cls, id: UUID) -> "RelatedRef":
        return cls(RelatedModel.TASK, id)

    @classmethod
    def project(cls, id: UUID) -> "RelatedRef":
        return cls(RelatedModel.PROJECT, id)

    @classmethod
    def document(cls, id: UUID) -> "RelatedRef":
        return cls(RelatedModel.DOCUMENT, id)

    @classmethod
    def finance(cls, id: UUID) -> "RelatedRef":
        return cls(RelatedModel.FINANCE, id)

    @classmethod
    def chat(cls, id: UUID) -> "RelatedRef":
        return cls(RelatedModel.CHAT, id)


# =============================================================================
# USERS
# =============================================================================


class User(Base, UUIDMixin, TimestampMixin):
    """Portal user: a client, a team member, or an admin."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_values),
        default=UserRole.CLIENT,
        nullable=False,
    )
    password_hash: Mapped[str | None] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    company_name: Mapped[str | None] = mapped_column(String(255))
    phone_number: Mapped[str | None] = mapped_column(String(50))

    __table_args__ = (
        Index("idx_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# =============================================================================
# PROJECTS & MILESTONES
# =============================================================================


class Project(Base, UUIDMixin, TimestampMixin):
    """A client engagement. Owns its milestone list."""

    __tablename__ = "projects"

    project_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, name="project_status", values_callable=_values),
        default=ProjectStatus.ACTIVE,
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(String(255))
    budget: Mapped[float] = mapped_column(Float, default=0)
    start_date: Mapped[datetime | None] = mapped_column()
    end_date: Mapped[datetime | None] = mapped_column()
    # Derived from milestones; written only by the progress aggregator
    overall_progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    # Relationships
    client: Mapped["User"] = relationship(foreign_keys=[client_id])
    milestones: Mapped[list["Milestone"]] = relationship(
        back_populates="project",
        order_by="Milestone.position",
        cascade="all, delete-orphan",
    )
    members: Mapped[list["ProjectMember"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_projects_client", "client_id"),
    )

    def milestone(self, milestone_id: UUID) -> "Milestone | None":
        """Look up an embedded milestone by id."""
        for milestone in self.milestones:
            if milestone.id == milestone_id:
                return milestone
        return None


class ProjectMember(Base, UUIDMixin):
    """Team member assignment on a project."""

    __tablename__ = "project_members"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(100), default="Contributor")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("project_id", "user_id"),
        Index("idx_project_members_user", "user_id"),
    )


class Milestone(Base, UUIDMixin):
    """A phase inside a project's ordered milestone list."""

    __tablename__ = "project_milestones"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[MilestoneStatus] = mapped_column(
        Enum(MilestoneStatus, name="milestone_status", values_callable=_values),
        default=MilestoneStatus.PENDING,
        nullable=False,
    )
    is_enabled: Mapped[bool] = mapped_column(default=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="milestones")

    __table_args__ = (
        Index("idx_milestones_project", "project_id", "position"),
    )


# =============================================================================
# CHATS & MESSAGES
# =============================================================================


class Chat(Base, UUIDMixin, TimestampMixin):
    """A 1:1 or group conversation, optionally scoped to a project."""

    __tablename__ = "chats"

    chat_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_group_chat: Mapped[bool] = mapped_column(default=False, nullable=False)
    group_admin_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    project_id: Mapped[UUID | None] = mapped_column(ForeignKey("projects.id"))
    latest_message_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("messages.id", use_alter=True, name="fk_chats_latest_message_id_messages")
    )
    # Sorted member pair + project for direct chats; NULL for groups
    direct_key: Mapped[str | None] = mapped_column(String(120), unique=True)
    # Last Message.seq handed out in this chat
    message_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    members: Mapped[list["ChatMember"]] = relationship(
        back_populates="chat",
        order_by="ChatMember.position",
        cascade="all, delete-orphan",
    )
    group_admin: Mapped["User | None"] = relationship(foreign_keys=[group_admin_id])
    project: Mapped["Project | None"] = relationship()
    latest_message: Mapped["Message | None"] = relationship(
        foreign_keys=[latest_message_id], post_update=True
    )

    __table_args__ = (
        Index("idx_chats_project", "project_id"),
    )

    @property
    def member_ids(self) -> list[UUID]:
        return [m.user_id for m in self.members]

    def has_member(self, user_id: UUID) -> bool:
        return any(m.user_id == user_id for m in self.members)


class ChatMember(Base, UUIDMixin):
    """Membership of a user in a chat."""

    __tablename__ = "chat_members"

    chat_id: Mapped[UUID] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    chat: Mapped["Chat"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id"),
        Index("idx_chat_members_user", "user_id"),
    )


class Message(Base, UUIDMixin):
    """A chat message. Immutable apart from its read receipts."""

    __tablename__ = "messages"

    chat_id: Mapped[UUID] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str | None] = mapped_column(Text)
    # [{"id": str, "url": str, "type": str}]
    attachments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    reply_to_id: Mapped[UUID | None] = mapped_column(ForeignKey("messages.id"))
    # Position in the chat, 1-based; history order
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    chat: Mapped["Chat"] = relationship(foreign_keys=[chat_id])
    sender: Mapped["User"] = relationship()
    reply_to: Mapped["Message | None"] = relationship(remote_side="Message.id")
    reads: Mapped[list["MessageRead"]] = relationship(
        back_populates="message",
        order_by="MessageRead.read_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("chat_id", "seq"),
        Index("idx_messages_chat_created", "chat_id", "created_at"),
    )

    @property
    def read_by(self) -> set[UUID]:
        return {r.user_id for r in self.reads}


class MessageRead(Base, UUIDMixin):
    """Read receipt: user has seen message."""

    __tablename__ = "message_reads"

    message_id: Mapped[UUID] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    read_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="reads")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id"),
        Index("idx_message_reads_user", "user_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin):
    """Per-recipient notification record."""

    __tablename__ = "notifications"

    recipient_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    sender_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", values_callable=_values),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_model: Mapped[RelatedModel | None] = mapped_column(
        Enum(RelatedModel, name="related_model", values_callable=_values)
    )
    related_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    is_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    recipient: Mapped["User"] = relationship(foreign_keys=[recipient_id])
    sender: Mapped["User | None"] = relationship(foreign_keys=[sender_id])

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_id", "created_at"),
        Index("idx_notifications_unread", "recipient_id", "is_read"),
    )

    @property
    def related(self) -> RelatedRef | None:
        if self.related_model is None or self.related_id is None:
            return None
        return RelatedRef(RelatedModel(self.related_model), self.related_id)


# =============================================================================
# TASKS & DOCUMENTS
# =============================================================================


class Task(Base, UUIDMixin, TimestampMixin):
    """Unit of work inside a milestone."""

    __tablename__ = "tasks"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    milestone_id: Mapped[UUID] = mapped_column(
        ForeignKey("project_milestones.id"), nullable=False
    )
    assigned_to: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status", values_callable=_values),
        default=TaskStatus.PENDING,
        nullable=False,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, name="task_priority", values_callable=_values),
        default=TaskPriority.MEDIUM,
        nullable=False,
    )
    start_date: Mapped[datetime | None] = mapped_column()
    end_date: Mapped[datetime | None] = mapped_column()
    # Set on submit: doc_name, doc_type, notes, file, submitted_by, submitted_at
    submission: Mapped[dict | None] = mapped_column(JSONType)
    admin_feedback: Mapped[str | None] = mapped_column(Text)
    reviewed_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    reviewed_at: Mapped[datetime | None] = mapped_column()
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    # Relationships
    project: Mapped["Project"] = relationship()
    milestone: Mapped["Milestone"] = relationship()
    assignee: Mapped["User | None"] = relationship(foreign_keys=[assigned_to])

    __table_args__ = (
        Index("idx_tasks_project_milestone", "project_id", "milestone_id"),
        Index("idx_tasks_assignee", "assigned_to", "status"),
    )


class Document(Base, UUIDMixin, TimestampMixin):
    """A file attached to a project milestone."""

    __tablename__ = "documents"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    milestone_id: Mapped[UUID] = mapped_column(
        ForeignKey("project_milestones.id"), nullable=False
    )
    uploaded_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    # {"id", "url", "format", "size", "content_type"}
    file: Mapped[dict] = mapped_column(JSONType, nullable=False)
    type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, name="document_type", values_callable=_values),
        default=DocumentType.PDF,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="document_status", values_callable=_values),
        default=DocumentStatus.PENDING,
        nullable=False,
    )
    approved_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    approved_at: Mapped[datetime | None] = mapped_column()

    # Relationships
    project: Mapped["Project"] = relationship()
    uploader: Mapped["User"] = relationship(foreign_keys=[uploaded_by])
    comments: Mapped[list["DocumentComment"]] = relationship(
        back_populates="document",
        order_by="DocumentComment.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_documents_project", "project_id", "milestone_id"),
    )


class DocumentComment(Base, UUIDMixin):
    """Review remark left on a document."""

    __tablename__ = "document_comments"

    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    document: Mapped["Document"] = relationship(back_populates="comments")
    author: Mapped["User"] = relationship()

    __table_args__ = (
        Index("idx_document_comments_document", "document_id", "created_at"),
    )
