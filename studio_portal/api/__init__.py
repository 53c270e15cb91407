"""API routes for the Studio Portal."""

from fastapi import APIRouter

from .auth import router as auth_router
from .chats import router as chats_router
from .documents import router as documents_router
from .messages import router as messages_router
from .notifications import router as notifications_router
from .projects import router as projects_router
from .realtime import router as realtime_router
from .tasks import router as tasks_router

# Main API router
api_router = APIRouter()

# Auth routes (login, me)
api_router.include_router(auth_router)

# Messaging
api_router.include_router(chats_router)
api_router.include_router(messages_router)
api_router.include_router(notifications_router)
api_router.include_router(realtime_router)

# Project work
api_router.include_router(projects_router)
api_router.include_router(tasks_router)
api_router.include_router(documents_router)

__all__ = ["api_router"]
