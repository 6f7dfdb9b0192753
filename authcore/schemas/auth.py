"""Token and session schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from authcore.schemas.user import UserPublic


class RefreshTokenRecord(BaseModel):
    """Stored refresh token; only the hash of the plaintext is kept"""
    token_hash: str
    owner_email: str
    family_id: str
    expires_at: datetime
    revoked: bool = False
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    replaced_by_hash: Optional[str] = None

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and self.expires_at > now


class FailedLoginEntry(BaseModel):
    """Failed-login counter for one identity"""
    identity: str
    attempts: int = 0
    locked_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def is_stale(self, now: datetime, older_than: datetime) -> bool:
        """Unlocked and untouched since ``older_than``"""
        return not self.is_locked(now) and self.updated_at is not None and self.updated_at <= older_than


class TokenPair(BaseModel):
    """Access token, refresh token plaintext and the user they belong to"""
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    user: UserPublic


class RefreshTokenRequest(BaseModel):
    """Refresh token in the body; omitted when the cookie carries it"""
    refresh_token: Optional[str] = Field(default=None, max_length=512)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=512)


class TokenResponse(BaseModel):
    """JWT token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserPublic


class CsrfTokenResponse(BaseModel):
    csrf_token: str
