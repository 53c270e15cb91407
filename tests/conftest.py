"""Shared fixtures: a file-backed SQLite database per test and seeded users."""

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-studio-portal-tests")
os.environ.setdefault("ENVIRONMENT", "development")

from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio_portal.core.database import build_engine
from studio_portal.core.security import hash_password
from studio_portal.models import Base, Project, Task, User, UserRole
from studio_portal.realtime import Connection, RealtimeGateway
from studio_portal.schemas import MilestoneCreate, ProjectCreate, TaskCreate
from studio_portal.services import (
    ProjectRegistry,
    StoredFile,
    TaskLifecycleEngine,
)

PASSWORD = "correct-horse-battery"


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# USERS
# =============================================================================


async def create_user(session: AsyncSession, name: str, role: UserRole) -> User:
    user = User(
        email=f"{name.lower().replace(' ', '.')}@studio.example.com",
        name=name,
        role=role,
        password_hash=hash_password(PASSWORD),
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
def password() -> str:
    return PASSWORD


@pytest.fixture
async def admin(session) -> User:
    return await create_user(session, "Ada Admin", UserRole.ADMIN)


@pytest.fixture
async def client_user(session) -> User:
    return await create_user(session, "Cleo Client", UserRole.CLIENT)


@pytest.fixture
async def team_member(session) -> User:
    return await create_user(session, "Theo Team", UserRole.TEAM_MEMBER)


@pytest.fixture
async def outsider(session) -> User:
    """A team member who belongs to no project or chat."""
    return await create_user(session, "Olive Outsider", UserRole.TEAM_MEMBER)


# =============================================================================
# PROJECT WORK
# =============================================================================


MILESTONE_NAMES = ["Concept", "Schematic Design", "Design Development", "Construction Docs"]


@pytest.fixture
async def project(session, admin, client_user, team_member) -> Project:
    """Four pending milestones, one team member, group chat provisioned."""
    registry = ProjectRegistry(session)
    project = await registry.create_project(
        admin,
        ProjectCreate(
            project_no="P-001",
            name="Harbour House",
            client_id=client_user.id,
            location="Pier 4",
            team_member_ids=[team_member.id],
            milestones=[MilestoneCreate(name=name) for name in MILESTONE_NAMES],
        ),
    )
    await session.commit()
    return project


@pytest.fixture
async def task(session, admin, team_member, project) -> Task:
    """A Pending task in the first milestone, assigned to the team member."""
    engine = TaskLifecycleEngine(session)
    task = await engine.create_task(
        admin,
        TaskCreate(
            name="Site survey",
            project_id=project.id,
            milestone_id=project.milestones[0].id,
            assigned_to=team_member.id,
        ),
    )
    await session.commit()
    return task


@pytest.fixture
def stored_file() -> StoredFile:
    return StoredFile(
        id="deliverables/survey.pdf",
        url="/static/storage/deliverables/survey.pdf",
        format="pdf",
        size=2048,
        content_type="application/pdf",
    )


# =============================================================================
# REALTIME
# =============================================================================


class FakeSocket:
    """Records frames; optionally fails every send like a dropped client."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if name is None or frame["event"] == name]


@pytest.fixture
def gateway() -> RealtimeGateway:
    return RealtimeGateway()


@pytest.fixture
def connect(gateway):
    """Factory: register a fake connection for a user."""

    async def _connect(user: User, fail: bool = False) -> Connection:
        connection = Connection(FakeSocket(fail), user.id, user.role.value)
        await gateway.connect(connection)
        return connection

    return _connect


