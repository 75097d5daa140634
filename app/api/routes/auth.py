# app/api/routes/auth.py

from typing import Optional
from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from redis.asyncio import Redis
from models.user import User
from schemas.user_schema import (
    SignupRequest,
    LoginRequest,
    TokenRequest,
    AuthResponse,
    TokenValidationResponse,
    LogoutResponse,
    UserProfile,
    UserUpdate
)
from services.auth_service import AuthService
from infrastructure.postgres_connection import get_db_session
from infrastructure.redis_connection import get_redis
from exceptions.domain_exceptions import NotFoundException, UnauthorizedException


# Create router
users_router = APIRouter(prefix="/users", tags=["Users"])

bearer_scheme = HTTPBearer(auto_error=False)


async def current_active_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
    redis: Redis = Depends(get_redis),
) -> User:
    """Dependency resolving the `Authorization: Bearer <token>` header to its user"""
    if credentials is None:
        raise UnauthorizedException(message="Authentication required")

    user = await AuthService.authenticate_token(session, redis, credentials.credentials)
    if user is None:
        raise UnauthorizedException(message="Invalid or expired token")
    return user


@users_router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    session: AsyncSession = Depends(get_db_session),
    redis: Redis = Depends(get_redis),
):
    """
    Create an account and sign in.

    - **username**: Unique, case-insensitive
    - **password**: At least 8 characters
    - **fullName**: Display name
    - **userImage**: Optional avatar as a data URL
    """
    return await AuthService.signup(
        session=session,
        redis=redis,
        username=data.username,
        password=data.password,
        full_name=data.full_name,
        avatar=data.user_image
    )


@users_router.post("/login", response_model=AuthResponse)
async def login(
    data: LoginRequest,
    session: AsyncSession = Depends(get_db_session),
    redis: Redis = Depends(get_redis),
):
    """Exchange a username and password for a session token."""
    return await AuthService.login(session, redis, data.username, data.password)


@users_router.post("/validate-token", response_model=TokenValidationResponse)
async def validate_token(
    data: TokenRequest,
    session: AsyncSession = Depends(get_db_session),
    redis: Redis = Depends(get_redis),
):
    """Report whether a token still identifies a live session."""
    return await AuthService.validate_token(session, redis, data.token)


@users_router.post("/logout", response_model=LogoutResponse)
async def logout(
    data: TokenRequest,
    redis: Redis = Depends(get_redis),
):
    """Invalidate a session token. Logging out twice is not an error."""
    await AuthService.logout(redis, data.token)
    return LogoutResponse(success=True)


@users_router.get("/me", response_model=UserProfile)
async def get_me(current_user: User = Depends(current_active_user)):
    return UserProfile.from_user(current_user)


@users_router.patch("/me", response_model=UserProfile)
async def update_me(
    data: UserUpdate,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Update the current user's profile.

    - **fullName**: New display name
    - **userImage**: New avatar, or an empty string to remove it
    """
    user = await AuthService.update_profile(
        session=session,
        user_id=current_user.id,
        full_name=data.full_name,
        avatar=data.user_image
    )
    return UserProfile.from_user(user)


@users_router.get("/username/{username}", response_model=UserProfile)
async def get_user_by_username(
    username: str,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    user = await AuthService.get_user_by_username(session, username)
    if not user:
        raise NotFoundException(
            message="User not found",
            details={"username": username}
        )
    return UserProfile.from_user(user)


@users_router.get("/{user_id}", response_model=UserProfile)
async def get_user(
    user_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    user = await AuthService.get_user(session, user_id)
    return UserProfile.from_user(user)
