"""Credential store contract consumed by the auth services."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from authcore.schemas.auth import FailedLoginEntry, RefreshTokenRecord
from authcore.schemas.user import UserRecord

# Maps an attempt count to a lock duration, or None when no lock applies.
LockWindow = Callable[[int], Optional[timedelta]]


class CredentialStore(Protocol):
    """
    Async persistence for users, refresh tokens and failed-login counters.

    Implementations must make ``rotate_refresh_token`` and
    ``record_failed_login`` atomic per key: for refresh tokens only one caller
    may consume a given live hash, and counter increments must not be lost.
    """

    async def find_by_email(self, email: str) -> Optional[UserRecord]: ...

    async def create(self, email: str, password_hash: str, role: str) -> UserRecord: ...

    async def store_refresh_token(
        self, owner_email: str, token_hash: str, expires_at: datetime, family_id: str
    ) -> None: ...

    async def rotate_refresh_token(
        self, old_hash: str, new_hash: str, new_expires_at: datetime
    ) -> bool:
        """Revoke ``old_hash`` and insert ``new_hash`` in its family.

        Returns False, changing nothing, when ``old_hash`` is not live.
        """
        ...

    async def revoke_refresh_token(self, token_hash: str) -> None: ...

    async def revoke_refresh_family(self, family_id: str) -> int: ...

    async def get_valid_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]: ...

    async def get_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]: ...

    async def record_failed_login(self, identity: str, lock_window: LockWindow) -> FailedLoginEntry: ...

    async def get_failed_login(self, identity: str) -> Optional[FailedLoginEntry]: ...

    async def reset_failed_logins(self, identity: str) -> None: ...

    async def cleanup_stale_failed_logins(self, older_than: datetime) -> int:
        """Drop unlocked counters last touched at or before ``older_than``"""
        ...

    async def cleanup_expired_refresh_tokens(self) -> int: ...

    async def ping(self) -> bool: ...
