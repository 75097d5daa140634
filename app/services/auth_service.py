# app/services/auth_service.py

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func
from redis.asyncio import Redis
from fastapi_users.password import PasswordHelper
from models.user import User
from schemas.user_schema import AuthResponse, TokenValidationResponse, UserProfile, SessionData
from services.session_service import SessionService
from config.settings import settings
from exceptions.domain_exceptions import (
    BadRequestException,
    ConflictException,
    NotFoundException,
    UnauthorizedException
)
import secrets
import logging

logger = logging.getLogger(__name__)

password_helper = PasswordHelper()


class AuthService:
    """Service for account creation, login and session validation"""

    INVALID_CREDENTIALS_MESSAGE = "Invalid username or password"

    _dummy_hash: Optional[str] = None

    @classmethod
    def _get_dummy_hash(cls) -> str:
        # Verified against on unknown usernames so both failure paths cost the same
        if cls._dummy_hash is None:
            cls._dummy_hash = password_helper.hash(secrets.token_urlsafe(16))
        return cls._dummy_hash

    @staticmethod
    def _build_auth_response(user: User, token: str, session_data: SessionData) -> AuthResponse:
        return AuthResponse(
            token=token,
            user_id=user.id,
            username=user.username,
            full_name=user.full_name,
            session_id=session_data.session_id,
            user_image=user.avatar,
        )

    @staticmethod
    async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
        """Case-insensitive lookup by username"""
        query = select(User).where(func.lower(User.username) == username.strip().lower())
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user(session: AsyncSession, user_id: int) -> User:
        """
        Get a user by ID

        Raises:
            NotFoundException: If the user doesn't exist
        """
        user = await session.get(User, user_id)
        if not user:
            raise NotFoundException(
                message="User not found",
                details={"user_id": user_id}
            )
        return user

    @staticmethod
    async def signup(
        session: AsyncSession,
        redis: Redis,
        username: str,
        password: str,
        full_name: str,
        avatar: Optional[str] = None
    ) -> AuthResponse:
        """
        Create an account and open a session for it

        Args:
            session: Database session
            redis: Redis client (session store)
            username: Desired username (unique, case-insensitive)
            password: Plain password, stored only as a salted hash
            full_name: Display name
            avatar: Optional inline image

        Returns:
            AuthResponse with the new token and profile fields

        Raises:
            BadRequestException: If required fields are missing or the password is too short
            ConflictException: If the username is already taken
        """
        username = (username or "").strip()
        full_name = (full_name or "").strip()

        missing = [
            name for name, value in (("username", username), ("password", password), ("fullName", full_name))
            if not value
        ]
        if missing:
            raise BadRequestException(
                message="Missing required fields",
                details={"missing_fields": missing}
            )

        if len(password) < settings.MIN_PASSWORD_LENGTH:
            raise BadRequestException(
                message=f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters long",
                details={"minimum_length": settings.MIN_PASSWORD_LENGTH}
            )

        if await AuthService.get_user_by_username(session, username):
            raise ConflictException(
                message="Username already exists",
                details={"username": username}
            )

        user = User(
            username=username,
            full_name=full_name,
            hashed_password=password_helper.hash(password),
            avatar=avatar,
        )
        session.add(user)

        try:
            await session.commit()
        except IntegrityError:
            # Lost a race against a concurrent signup with the same username
            await session.rollback()
            raise ConflictException(
                message="Username already exists",
                details={"username": username}
            )
        await session.refresh(user)

        token, session_data = await SessionService.create_session(redis, user.id)
        logger.info(f"User {user.id} ({user.username}) has registered")

        return AuthService._build_auth_response(user, token, session_data)

    @staticmethod
    async def login(
        session: AsyncSession,
        redis: Redis,
        username: str,
        password: str
    ) -> AuthResponse:
        """
        Check credentials and open a new session

        Raises:
            UnauthorizedException: Same message whether the username is unknown or the password wrong
        """
        user = await AuthService.get_user_by_username(session, username or "")

        if user is None:
            password_helper.verify_and_update(password or "", AuthService._get_dummy_hash())
            logger.warning("Login failed: invalid credentials")
            raise UnauthorizedException(message=AuthService.INVALID_CREDENTIALS_MESSAGE)

        verified, updated_hash = password_helper.verify_and_update(password or "", user.hashed_password)
        if not verified:
            logger.warning(f"Login failed for user {user.id}: invalid credentials")
            raise UnauthorizedException(message=AuthService.INVALID_CREDENTIALS_MESSAGE)

        if updated_hash is not None:
            user.hashed_password = updated_hash
            await session.commit()

        token, session_data = await SessionService.create_session(redis, user.id)
        logger.info(f"User {user.id} ({user.username}) has logged in")

        return AuthService._build_auth_response(user, token, session_data)

    @staticmethod
    async def authenticate_token(
        session: AsyncSession,
        redis: Redis,
        token: Optional[str]
    ) -> Optional[User]:
        """
        Resolve a token to its user

        Returns None for any invalid token. Raises only TransportException.
        """
        session_data = await SessionService.get_session(redis, token)
        if session_data is None:
            return None

        user = await session.get(User, session_data.user_id)
        if user is None:
            logger.warning(f"Session {session_data.session_id} references missing user {session_data.user_id}")
        return user

    @staticmethod
    async def validate_token(
        session: AsyncSession,
        redis: Redis,
        token: Optional[str]
    ) -> TokenValidationResponse:
        """Report whether a token is valid, failing closed"""
        user = await AuthService.authenticate_token(session, redis, token)
        if user is None:
            return TokenValidationResponse(valid=False)
        return TokenValidationResponse(valid=True, user=UserProfile.from_user(user))

    @staticmethod
    async def logout(redis: Redis, token: Optional[str]) -> None:
        """Invalidate a session. Logging out twice is not an error."""
        await SessionService.delete_session(redis, token)

    @staticmethod
    async def update_profile(
        session: AsyncSession,
        user_id: int,
        full_name: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> User:
        """
        Update mutable profile fields. Fields left as None are unchanged,
        an empty avatar removes it.

        Raises:
            NotFoundException: If the user doesn't exist
            BadRequestException: If full_name is blank
        """
        user = await AuthService.get_user(session, user_id)

        if full_name is not None:
            full_name = full_name.strip()
            if not full_name:
                raise BadRequestException(message="Full name cannot be empty")
            user.full_name = full_name

        if avatar is not None:
            # Empty string clears the avatar
            user.avatar = avatar or None

        await session.commit()
        await session.refresh(user)
        return user
