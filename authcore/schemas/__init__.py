"""Pydantic schemas for records and API validation"""

from authcore.schemas.user import (
    UserRole,
    UserRecord,
    UserPublic,
    UserResponse,
    UserLogin,
    UserCreate,
)
from authcore.schemas.auth import (
    RefreshTokenRecord,
    FailedLoginEntry,
    TokenPair,
    RefreshTokenRequest,
    LogoutRequest,
    TokenResponse,
    CsrfTokenResponse,
)

__all__ = [
    "UserRole", "UserRecord", "UserPublic", "UserResponse", "UserLogin", "UserCreate",
    "RefreshTokenRecord", "FailedLoginEntry", "TokenPair",
    "RefreshTokenRequest", "LogoutRequest", "TokenResponse", "CsrfTokenResponse",
]
