"""Authentication API routes.

Token issuance for portal users; registration and OTP flows live elsewhere.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import select

from ..core import CurrentUserDep, SessionDep
from ..core.security import create_access_token, verify_password
from ..models import User
from ..schemas import UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class LoginRequest(BaseModel):
    """Login request with email and password."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token response after successful login."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    session: SessionDep,
):
    """Login with email and password."""
    result = await session.execute(
        select(User).where(User.email == request.email.lower())
    )
    user = result.scalar_one_or_none()

    if not user or not user.password_hash or not verify_password(request.password, user.password_hash):
        logger.info(f"Failed login for {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token = create_access_token(user.id, user.role.value)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(current_user: CurrentUserDep):
    """Get the authenticated user."""
    return UserResponse.model_validate(current_user.user)
