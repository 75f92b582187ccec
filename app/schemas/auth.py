"""Pydantic schemas for request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.core.models import UserRole


class Token(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Claims carried by an access token."""

    user_id: int
    email: str | None = None
    role: UserRole | None = None


class UserBase(BaseModel):
    """Base user schema."""

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class UserCreate(UserBase):
    """Schema for signing up as a provider or receiver."""

    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.RECEIVER

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: UserRole) -> UserRole:
        """Only providers and receivers can sign themselves up."""
        if v == UserRole.ADMIN:
            raise ValueError("Cannot register as admin")
        return v


class UserResponse(UserBase):
    """Schema for user response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    role: UserRole
    is_active: bool
    created_at: datetime
