# app/models/user.py

from datetime import datetime, UTC
from sqlalchemy import String, Integer, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column
from infrastructure.postgres_connection import Base


class User(Base):
    """Registered user with profile fields and a salted password hash"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Inline encoded image (data URL) or an external image reference
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


# Usernames are unique regardless of case
Index("uq_users_username_lower", func.lower(User.username), unique=True)
