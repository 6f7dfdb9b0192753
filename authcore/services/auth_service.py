"""Auth service - registration, login, refresh, logout and current user"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from fastapi.concurrency import run_in_threadpool

from authcore.config import Settings
from authcore.core.exceptions import (
    AccountLockedError,
    EmailExistsError,
    InvalidCredentialsError,
    UserNotFoundError,
    WeakPasswordError,
)
from authcore.core.metrics import FAILED_LOGINS_PURGED, LOGIN_ATTEMPTS, TOKENS_CLEANED
from authcore.core.security import (
    AuthContext,
    PasswordHasher,
    TokenIssuer,
    utcnow,
    validate_password_policy,
)
from authcore.repositories.base import CredentialStore
from authcore.schemas.auth import TokenPair
from authcore.schemas.user import UserPublic, UserRecord, UserRole
from authcore.services.lockout_service import LockoutPolicy
from authcore.services.token_service import TokenService

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authcore.audit")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Composition root for the auth flows.

    The credential store is injected; hashing and token issuance are built
    from settings unless supplied.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        issuer: Optional[TokenIssuer] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock
        self.hasher = hasher or PasswordHasher(settings.BCRYPT_ROUNDS)
        self.issuer = issuer or TokenIssuer(settings)
        self.lockout = LockoutPolicy.from_settings(store, settings, clock)
        self.tokens = TokenService(
            store,
            self.issuer,
            revoke_family_on_reuse=settings.REVOKE_FAMILY_ON_REUSE,
            clock=clock,
        )

    async def register(
        self, email: str, password: str, role: Union[UserRole, str] = UserRole.USER
    ) -> UserPublic:
        """
        Create a user; does not log in

        Raises:
            WeakPasswordError: password fails the complexity policy
            EmailExistsError: email already registered
        """
        email = normalize_email(email)
        role = UserRole(role)
        if not validate_password_policy(password):
            raise WeakPasswordError()
        if await self.store.find_by_email(email) is not None:
            raise EmailExistsError()

        password_hash = await run_in_threadpool(self.hasher.hash, password)
        user = await self.store.create(email, password_hash, role.value)
        audit_logger.info("auth.register email=%s role=%s", user.email, user.role.value)
        return user.public()

    async def login(self, email: str, password: str) -> TokenPair:
        """
        Authenticate credentials and issue an access/refresh pair

        Raises:
            AccountLockedError: identity is inside a lock window
            InvalidCredentialsError: unknown email or wrong password
        """
        identity = normalize_email(email)

        locked_until = await self.lockout.locked_until(identity)
        if locked_until is not None:
            LOGIN_ATTEMPTS.labels("locked").inc()
            retry_after = max(1, math.ceil((locked_until - self._clock()).total_seconds()))
            audit_logger.info("auth.login.locked email=%s retry_after=%d", identity, retry_after)
            raise AccountLockedError(locked_until, retry_after)

        user = await self.store.find_by_email(identity)
        if user is None:
            matched = await run_in_threadpool(self.hasher.dummy_verify, password)
        else:
            matched = await run_in_threadpool(self.hasher.verify, password, user.password_hash)

        if not matched:
            entry = await self.lockout.record_failure(identity)
            LOGIN_ATTEMPTS.labels("invalid").inc()
            audit_logger.info("auth.login.failure email=%s attempts=%d", identity, entry.attempts)
            raise InvalidCredentialsError()

        await self.lockout.reset(identity)
        pair = await self.tokens.issue_pair(user.public())
        LOGIN_ATTEMPTS.labels("success").inc()
        audit_logger.info("auth.login.success email=%s", identity)
        return pair

    async def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        """Rotate a refresh token; raises InvalidTokenError"""
        return await self.tokens.rotate(refresh_token)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the given refresh token. Never raises."""
        try:
            await self.tokens.revoke(refresh_token)
        except Exception:
            logger.exception("Refresh token revocation failed during logout")
            return
        audit_logger.info("auth.logout token_present=%s", bool(refresh_token))

    async def me(self, context: AuthContext) -> UserRecord:
        """Current user for verified claims; the account may have been deleted since issuance"""
        user = await self.store.find_by_email(context.subject)
        if user is None:
            raise UserNotFoundError()
        return user

    async def bootstrap_admin(self, email: str, password: str) -> Optional[UserPublic]:
        """Create the admin account if it does not exist yet"""
        try:
            admin = await self.register(email, password, UserRole.ADMIN)
        except EmailExistsError:
            return None
        logger.info(f"Created admin user: {admin.email}")
        return admin

    async def cleanup_expired_tokens(self) -> int:
        """Purge expired refresh tokens, then stale failed-login counters

        Returns the number of refresh token records removed.
        """
        removed = await self.store.cleanup_expired_refresh_tokens()
        if removed:
            TOKENS_CLEANED.inc(removed)
            logger.info(f"Removed {removed} expired refresh tokens")
        await self.cleanup_stale_failed_logins()
        return removed

    async def cleanup_stale_failed_logins(self) -> int:
        """Forget unlocked failure counters older than the retention window"""
        older_than = self._clock() - timedelta(hours=self.settings.FAILED_LOGIN_RETENTION_HOURS)
        purged = await self.store.cleanup_stale_failed_logins(older_than)
        if purged:
            FAILED_LOGINS_PURGED.inc(purged)
            logger.info(f"Removed {purged} stale failed-login counters")
        return purged
