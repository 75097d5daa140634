# app/services/session_service.py

import json
import re
import secrets
import uuid
from typing import Optional
from datetime import datetime, timedelta, UTC
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from pydantic import ValidationError
from config.settings import settings
from schemas.user_schema import SessionData
from exceptions.domain_exceptions import TransportException
import logging

logger = logging.getLogger(__name__)


class SessionService:
    """Service for managing opaque session tokens in Redis"""

    SESSION_PREFIX = "session:"
    MAX_TOKEN_LENGTH = 128
    _TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

    @staticmethod
    def _session_key(token: str) -> str:
        """Get Redis key for session data"""
        return f"{SessionService.SESSION_PREFIX}{token}"

    @staticmethod
    def _generate_token() -> str:
        return secrets.token_urlsafe(settings.SESSION_TOKEN_BYTES)

    @staticmethod
    def is_well_formed(token: Optional[str]) -> bool:
        """Cheap syntactic check so garbage never reaches Redis"""
        if not token or len(token) > SessionService.MAX_TOKEN_LENGTH:
            return False
        return bool(SessionService._TOKEN_PATTERN.match(token))

    @staticmethod
    async def create_session(redis: Redis, user_id: int) -> tuple[str, SessionData]:
        """
        Issue a new session token bound to a user

        Args:
            redis: Redis client
            user_id: ID of the authenticated user

        Returns:
            Tuple of (token, session data)

        Raises:
            TransportException: If Redis is unreachable
        """
        token = SessionService._generate_token()
        issued_at = datetime.now(UTC)
        expires_at = issued_at + timedelta(seconds=settings.SESSION_TTL_SECONDS)

        session = SessionData(
            user_id=user_id,
            session_id=str(uuid.uuid4()),
            issued_at=issued_at.isoformat(),
            expires_at=expires_at.isoformat(),
        )

        try:
            await redis.setex(
                SessionService._session_key(token),
                settings.SESSION_TTL_SECONDS,
                session.model_dump_json()
            )
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Could not store session for user {user_id}: {e}")
            raise TransportException(message="Session store unavailable")

        logger.info(f"Created session {session.session_id} for user {user_id}")
        return token, session

    @staticmethod
    async def get_session(redis: Redis, token: Optional[str]) -> Optional[SessionData]:
        """
        Resolve a token to its session

        Returns None for malformed, unknown, corrupted or expired tokens.
        Only a transport failure raises.

        Raises:
            TransportException: If Redis is unreachable
        """
        if not SessionService.is_well_formed(token):
            return None

        try:
            data = await redis.get(SessionService._session_key(token))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Could not read session: {e}")
            raise TransportException(message="Session store unavailable")

        if not data:
            return None

        try:
            session = SessionData(**json.loads(data))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.error(f"Corrupted session record: {e}")
            return None

        # Redis TTL normally removes the key first
        if datetime.fromisoformat(session.expires_at) <= datetime.now(UTC):
            return None

        return session

    @staticmethod
    async def delete_session(redis: Redis, token: Optional[str]) -> bool:
        """
        Invalidate a session token. Deleting an unknown token is not an error.

        Returns:
            True if a session was deleted, False if it didn't exist

        Raises:
            TransportException: If Redis is unreachable
        """
        if not SessionService.is_well_formed(token):
            return False

        try:
            deleted = await redis.delete(SessionService._session_key(token))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Could not delete session: {e}")
            raise TransportException(message="Session store unavailable")

        if deleted:
            logger.info("Session invalidated")
        else:
            logger.debug("Session not found for deletion")

        return bool(deleted)
