# app/schemas/user_schema.py

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from models.user import User


class CamelModel(BaseModel):
    """Auth payloads use camelCase on the wire to match the browser client"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class UserValidatorsMixin:
    """Mixin class with shared validators for user schemas"""

    @field_validator('username', check_fields=False)
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError('Username cannot be empty or only whitespace')
            if any(c.isspace() for c in v):
                raise ValueError('Username cannot contain spaces')
        return v

    @field_validator('full_name', check_fields=False)
    @classmethod
    def validate_full_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError('Full name cannot be empty or only whitespace')
        return v


class UserProfile(CamelModel):
    """Public profile fields of a user"""
    user_id: int
    username: str
    full_name: str
    user_image: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            user_id=user.id,
            username=user.username,
            full_name=user.full_name,
            user_image=user.avatar,
        )


class SignupRequest(UserValidatorsMixin, CamelModel):
    """Schema for creating a new account"""
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=255)
    user_image: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "cool_user",
                "password": "strongpassword123",
                "fullName": "Cool User"
            }
        }
    )


class LoginRequest(CamelModel):
    username: str
    password: str


class TokenRequest(CamelModel):
    token: str


class AuthResponse(CamelModel):
    """Returned by signup and login"""
    token: str
    user_id: int
    username: str
    full_name: str
    session_id: str
    user_image: Optional[str] = None


class TokenValidationResponse(CamelModel):
    valid: bool
    user: Optional[UserProfile] = None


class LogoutResponse(CamelModel):
    success: bool = True


class UserUpdate(UserValidatorsMixin, CamelModel):
    """Schema for updating the current user's profile"""
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    user_image: Optional[str] = None


class SessionData(BaseModel):
    """Session record kept in Redis under the session token"""
    user_id: int
    session_id: str
    issued_at: str  # ISO format datetime string
    expires_at: str  # ISO format datetime string
