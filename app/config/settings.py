# app/config/settings.py

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True
    )

    # Redis Configuration
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DECODE_RESPONSES: bool = True

    # PostgreSQL Configuration
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "friendzone_db"

    # Application Configuration
    APP_NAME: str = "FriendZone Backend"
    DEBUG: bool = True
    API_PREFIX: str = "/api"
    CORS_ORIGINS: list = [
        "http://localhost:3000",  # React default
        "http://localhost:5173",  # Vite default
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # Session Configuration
    SESSION_TTL_SECONDS: int = 3600 * 24  # 24 hours
    SESSION_TOKEN_BYTES: int = 32
    MIN_PASSWORD_LENGTH: int = 8

    # Attachment Policy
    MAX_ATTACHMENT_SIZE: int = 10 * 1024 * 1024  # 10MB in bytes
    MAX_ATTACHMENTS_PER_MESSAGE: int = 10
    ALLOWED_ATTACHMENT_TYPES: list = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ]

    # Realtime Configuration
    SUBSCRIBER_QUEUE_SIZE: int = 256  # Pending messages per subscriber before it is dropped
    REALTIME_REDIS_BRIDGE: bool = False  # Share conversation channels across processes via Redis

    # User search
    USER_SEARCH_LIMIT: int = 10

    @property
    def DATABASE_URL(self) -> str:
        """Construct PostgreSQL connection URL for SQLAlchemy"""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"


settings = Settings()
