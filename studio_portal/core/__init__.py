"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    after_commit,
    async_session_factory,
    build_engine,
    close_db,
    commit_session,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import (
    AdminDep,
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    get_current_user,
    require_admin,
)
from .locks import KeyedLock
from .security import (
    create_access_token,
    decode_token,
    hash_password,
    strip_bearer,
    verify_password,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "build_engine",
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "after_commit",
    "commit_session",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_admin",
    "CurrentUserDep",
    "AdminDep",
    "SessionDep",
    # Concurrency
    "KeyedLock",
    # Security
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_token",
    "strip_bearer",
]
