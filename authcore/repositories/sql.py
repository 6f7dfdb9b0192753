"""SQLAlchemy-backed credential store.

Sessions are synchronous; each public coroutine runs its unit of work in the
threadpool. Per-key atomicity comes from the database: refresh rotation is a
conditional UPDATE on the live row, failed logins are counted under a row lock.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from authcore.core.exceptions import EmailExistsError
from authcore.core.security import as_utc, utcnow
from authcore.models.security import FailedLogin, RefreshToken
from authcore.models.user import User
from authcore.repositories.base import LockWindow
from authcore.schemas.auth import FailedLoginEntry, RefreshTokenRecord
from authcore.schemas.user import UserRecord, UserRole

logger = logging.getLogger(__name__)

MAX_COUNTER_RETRIES = 3


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        email=row.email,
        password_hash=row.password_hash,
        role=UserRole(row.role),
        created_at=as_utc(row.created_at) if row.created_at else utcnow(),
    )


def _token_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_hash=row.token_hash,
        owner_email=row.owner_email,
        family_id=row.family_id,
        expires_at=as_utc(row.expires_at),
        revoked=row.revoked,
        created_at=as_utc(row.created_at) if row.created_at else None,
        revoked_at=as_utc(row.revoked_at) if row.revoked_at else None,
        replaced_by_hash=row.replaced_by_hash,
    )


def _failed_entry(row: FailedLogin) -> FailedLoginEntry:
    return FailedLoginEntry(
        identity=row.identity,
        attempts=row.attempts,
        locked_until=as_utc(row.locked_until) if row.locked_until else None,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )


class SqlCredentialStore:
    """Credential store over any SQLAlchemy database."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    # Users

    def _find_by_email(self, email: str) -> Optional[UserRecord]:
        with self._session_factory() as db:
            row = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
            return _user_record(row) if row else None

    def _create(self, email: str, password_hash: str, role: str) -> UserRecord:
        with self._session_factory() as db:
            row = User(email=email, password_hash=password_hash, role=UserRole(role).value, created_at=self._clock())
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise EmailExistsError() from exc
            return _user_record(row)

    def _delete_user(self, email: str) -> bool:
        with self._session_factory() as db:
            result = db.execute(delete(User).where(User.email == email))
            db.commit()
            return result.rowcount > 0

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        return await run_in_threadpool(self._find_by_email, email)

    async def create(self, email: str, password_hash: str, role: str) -> UserRecord:
        return await run_in_threadpool(self._create, email, password_hash, role)

    async def delete_user(self, email: str) -> bool:
        return await run_in_threadpool(self._delete_user, email)

    # Refresh tokens

    def _store_refresh_token(self, owner_email: str, token_hash: str, expires_at: datetime, family_id: str) -> None:
        with self._session_factory() as db:
            db.add(
                RefreshToken(
                    token_hash=token_hash,
                    owner_email=owner_email,
                    family_id=family_id,
                    expires_at=expires_at,
                    revoked=False,
                    created_at=self._clock(),
                )
            )
            db.commit()

    def _rotate_refresh_token(self, old_hash: str, new_hash: str, new_expires_at: datetime) -> bool:
        now = self._clock()
        with self._session_factory() as db:
            consumed = db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_hash == old_hash,
                    RefreshToken.revoked.is_(False),
                    RefreshToken.expires_at > now,
                )
                .values(revoked=True, revoked_at=now, replaced_by_hash=new_hash)
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount != 1:
                db.rollback()
                return False

            old = db.execute(select(RefreshToken).where(RefreshToken.token_hash == old_hash)).scalar_one()
            db.add(
                RefreshToken(
                    token_hash=new_hash,
                    owner_email=old.owner_email,
                    family_id=old.family_id,
                    expires_at=new_expires_at,
                    revoked=False,
                    created_at=now,
                )
            )
            db.commit()
            return True

    def _revoke_refresh_token(self, token_hash: str) -> None:
        with self._session_factory() as db:
            db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_hash == token_hash, RefreshToken.revoked.is_(False))
                .values(revoked=True, revoked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def _revoke_refresh_family(self, family_id: str) -> int:
        with self._session_factory() as db:
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.family_id == family_id, RefreshToken.revoked.is_(False))
                .values(revoked=True, revoked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount

    def _get_refresh_token(self, token_hash: str, valid_only: bool) -> Optional[RefreshTokenRecord]:
        query = select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        if valid_only:
            query = query.where(RefreshToken.revoked.is_(False), RefreshToken.expires_at > self._clock())
        with self._session_factory() as db:
            row = db.execute(query).scalar_one_or_none()
            return _token_record(row) if row else None

    def _cleanup_expired_refresh_tokens(self) -> int:
        with self._session_factory() as db:
            result = db.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at <= self._clock())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount

    async def store_refresh_token(
        self, owner_email: str, token_hash: str, expires_at: datetime, family_id: str
    ) -> None:
        await run_in_threadpool(self._store_refresh_token, owner_email, token_hash, expires_at, family_id)

    async def rotate_refresh_token(self, old_hash: str, new_hash: str, new_expires_at: datetime) -> bool:
        return await run_in_threadpool(self._rotate_refresh_token, old_hash, new_hash, new_expires_at)

    async def revoke_refresh_token(self, token_hash: str) -> None:
        await run_in_threadpool(self._revoke_refresh_token, token_hash)

    async def revoke_refresh_family(self, family_id: str) -> int:
        return await run_in_threadpool(self._revoke_refresh_family, family_id)

    async def get_valid_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        return await run_in_threadpool(self._get_refresh_token, token_hash, True)

    async def get_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        return await run_in_threadpool(self._get_refresh_token, token_hash, False)

    async def cleanup_expired_refresh_tokens(self) -> int:
        return await run_in_threadpool(self._cleanup_expired_refresh_tokens)

    # Failed logins

    def _record_failed_login(self, identity: str, lock_window: LockWindow) -> FailedLoginEntry:
        for _ in range(MAX_COUNTER_RETRIES):
            with self._session_factory() as db:
                now = self._clock()
                row = db.execute(
                    select(FailedLogin).where(FailedLogin.identity == identity).with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    row = FailedLogin(identity=identity, attempts=0)
                    db.add(row)
                elif row.locked_until is not None and as_utc(row.locked_until) > now:
                    entry = _failed_entry(row)
                    db.rollback()
                    return entry

                row.attempts += 1
                row.updated_at = now
                duration = lock_window(row.attempts)
                if duration is not None:
                    row.locked_until = now + duration
                try:
                    db.commit()
                except IntegrityError:
                    # Another request created the row first; count again on top of it.
                    db.rollback()
                    continue
                return _failed_entry(row)

        raise RuntimeError(f"Could not record failed login after {MAX_COUNTER_RETRIES} attempts")

    def _get_failed_login(self, identity: str) -> Optional[FailedLoginEntry]:
        with self._session_factory() as db:
            row = db.execute(select(FailedLogin).where(FailedLogin.identity == identity)).scalar_one_or_none()
            return _failed_entry(row) if row else None

    def _reset_failed_logins(self, identity: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(FailedLogin).where(FailedLogin.identity == identity))
            db.commit()

    def _cleanup_stale_failed_logins(self, older_than: datetime) -> int:
        now = self._clock()
        with self._session_factory() as db:
            result = db.execute(
                delete(FailedLogin)
                .where(
                    FailedLogin.updated_at <= older_than,
                    or_(FailedLogin.locked_until.is_(None), FailedLogin.locked_until <= now),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount

    async def record_failed_login(self, identity: str, lock_window: LockWindow) -> FailedLoginEntry:
        return await run_in_threadpool(self._record_failed_login, identity, lock_window)

    async def get_failed_login(self, identity: str) -> Optional[FailedLoginEntry]:
        return await run_in_threadpool(self._get_failed_login, identity)

    async def reset_failed_logins(self, identity: str) -> None:
        await run_in_threadpool(self._reset_failed_logins, identity)

    async def cleanup_stale_failed_logins(self, older_than: datetime) -> int:
        return await run_in_threadpool(self._cleanup_stale_failed_logins, older_than)

    def _ping(self) -> bool:
        with self._session_factory() as db:
            db.execute(text("SELECT 1"))
        return True

    async def ping(self) -> bool:
        try:
            return await run_in_threadpool(self._ping)
        except Exception as exc:
            logger.error("Credential store ping failed: %s", exc)
            return False
