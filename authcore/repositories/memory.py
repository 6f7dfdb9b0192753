"""In-process credential store for development and tests."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional

from authcore.core.exceptions import EmailExistsError
from authcore.core.security import utcnow
from authcore.repositories.base import LockWindow
from authcore.schemas.auth import FailedLoginEntry, RefreshTokenRecord
from authcore.schemas.user import UserRecord, UserRole


class MemoryCredentialStore:
    """Dict-backed store guarded by one asyncio lock.

    Atomicity only holds inside a single process; use the SQL store when
    several workers share credentials.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._users: Dict[str, UserRecord] = {}
        self._refresh_tokens: Dict[str, RefreshTokenRecord] = {}
        self._failed_logins: Dict[str, FailedLoginEntry] = {}

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        user = self._users.get(email)
        return user.model_copy() if user else None

    async def create(self, email: str, password_hash: str, role: str) -> UserRecord:
        async with self._lock:
            if email in self._users:
                raise EmailExistsError()
            user = UserRecord(
                email=email,
                password_hash=password_hash,
                role=UserRole(role),
                created_at=self._clock(),
            )
            self._users[email] = user
            return user.model_copy()

    async def delete_user(self, email: str) -> bool:
        async with self._lock:
            return self._users.pop(email, None) is not None

    async def store_refresh_token(
        self, owner_email: str, token_hash: str, expires_at: datetime, family_id: str
    ) -> None:
        async with self._lock:
            self._refresh_tokens[token_hash] = RefreshTokenRecord(
                token_hash=token_hash,
                owner_email=owner_email,
                family_id=family_id,
                expires_at=expires_at,
                created_at=self._clock(),
            )

    async def rotate_refresh_token(self, old_hash: str, new_hash: str, new_expires_at: datetime) -> bool:
        async with self._lock:
            now = self._clock()
            old = self._refresh_tokens.get(old_hash)
            if old is None or not old.is_valid(now):
                return False
            old.revoked = True
            old.revoked_at = now
            old.replaced_by_hash = new_hash
            self._refresh_tokens[new_hash] = RefreshTokenRecord(
                token_hash=new_hash,
                owner_email=old.owner_email,
                family_id=old.family_id,
                expires_at=new_expires_at,
                created_at=now,
            )
            return True

    async def revoke_refresh_token(self, token_hash: str) -> None:
        async with self._lock:
            record = self._refresh_tokens.get(token_hash)
            if record is not None and not record.revoked:
                record.revoked = True
                record.revoked_at = self._clock()

    async def revoke_refresh_family(self, family_id: str) -> int:
        async with self._lock:
            now = self._clock()
            count = 0
            for record in self._refresh_tokens.values():
                if record.family_id == family_id and not record.revoked:
                    record.revoked = True
                    record.revoked_at = now
                    count += 1
            return count

    async def get_valid_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        record = self._refresh_tokens.get(token_hash)
        if record is None or not record.is_valid(self._clock()):
            return None
        return record.model_copy()

    async def get_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        record = self._refresh_tokens.get(token_hash)
        return record.model_copy() if record else None

    async def record_failed_login(self, identity: str, lock_window: LockWindow) -> FailedLoginEntry:
        async with self._lock:
            now = self._clock()
            entry = self._failed_logins.get(identity) or FailedLoginEntry(identity=identity)
            if entry.is_locked(now):
                return entry.model_copy()
            entry.attempts += 1
            entry.updated_at = now
            duration = lock_window(entry.attempts)
            if duration is not None:
                entry.locked_until = now + duration
            self._failed_logins[identity] = entry
            return entry.model_copy()

    async def get_failed_login(self, identity: str) -> Optional[FailedLoginEntry]:
        entry = self._failed_logins.get(identity)
        return entry.model_copy() if entry else None

    async def reset_failed_logins(self, identity: str) -> None:
        async with self._lock:
            self._failed_logins.pop(identity, None)

    async def cleanup_stale_failed_logins(self, older_than: datetime) -> int:
        async with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._failed_logins.items() if entry.is_stale(now, older_than)]
            for key in stale:
                del self._failed_logins[key]
            return len(stale)

    async def cleanup_expired_refresh_tokens(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, record in self._refresh_tokens.items() if record.expires_at <= now]
            for key in expired:
                del self._refresh_tokens[key]
            return len(expired)

    async def ping(self) -> bool:
        return True
