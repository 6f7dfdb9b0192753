"""User schemas"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserRole(str, Enum):
    """User role enumeration"""
    USER = "user"
    ADMIN = "admin"


class UserRecord(BaseModel):
    """Persisted user as returned by the credential store"""
    email: str
    password_hash: str
    role: UserRole = UserRole.USER
    created_at: datetime

    def public(self) -> "UserPublic":
        return UserPublic(email=self.email, role=self.role)


class UserPublic(BaseModel):
    """Public-safe projection of a user"""
    email: str
    role: UserRole


class UserResponse(BaseModel):
    """User response schema"""
    email: str
    role: UserRole
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserLogin(BaseModel):
    """User login schema"""
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserCreate(UserLogin):
    """User registration schema; public sign-ups always get the user role"""
