"""Base schemas and common types for the Studio Portal API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr

from ..models import UserRole


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class PortalBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(PortalBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(PortalBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(PortalBaseModel):
    """Minimal user reference for embedding in responses."""

    id: UUID
    name: str
    email: EmailStr
    role: UserRole
    avatar_url: str | None = None


class UserResponse(UserRef):
    """Full user profile."""

    company_name: str | None = None
    phone_number: str | None = None
    created_at: datetime
