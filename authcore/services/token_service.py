"""Refresh token rotation and revocation service."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional, Tuple

from authcore.core.exceptions import InvalidTokenError
from authcore.core.metrics import REFRESH_ROTATIONS
from authcore.core.security import TokenIssuer, utcnow
from authcore.repositories.base import CredentialStore
from authcore.schemas.auth import RefreshTokenRecord, TokenPair
from authcore.schemas.user import UserPublic

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authcore.audit")


def _short(token_hash: str) -> str:
    return token_hash[:8]


class TokenService:
    """
    Manage refresh-token family lifecycle.

    A login starts a family; each rotation revokes the presented token and
    adds its successor to the same family. Presenting a revoked token again
    is treated as reuse: it is always logged, and with
    ``revoke_family_on_reuse`` every live token of the family is revoked too.
    """

    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        *,
        revoke_family_on_reuse: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._clock = clock
        self.revoke_family_on_reuse = revoke_family_on_reuse

    def _new_refresh_token(self) -> Tuple[str, str, datetime]:
        plaintext = self._issuer.issue_refresh_token()
        return plaintext, self._issuer.hash_refresh_token(plaintext), self._clock() + self._issuer.refresh_ttl

    def _pair(self, user: UserPublic, refresh_token: str, refresh_expires_at: datetime) -> TokenPair:
        return TokenPair(
            access_token=self._issuer.issue_access_token(user.email, user.role.value),
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
            user=user,
        )

    async def issue_pair(self, user: UserPublic) -> TokenPair:
        """Start a new session: fresh access token plus a refresh token in a new family"""
        family_id = secrets.token_urlsafe(32)
        plaintext, token_hash, expires_at = self._new_refresh_token()
        await self._store.store_refresh_token(user.email, token_hash, expires_at, family_id)
        return self._pair(user, plaintext, expires_at)

    async def rotate(self, presented_token: Optional[str]) -> TokenPair:
        """
        Exchange a live refresh token for a new pair.

        Raises:
            InvalidTokenError: unknown, revoked, expired, or consumed concurrently
        """
        if not presented_token:
            REFRESH_ROTATIONS.labels("invalid").inc()
            raise InvalidTokenError()

        old_hash = self._issuer.hash_refresh_token(presented_token)
        record = await self._store.get_valid_refresh_token(old_hash)
        if record is None:
            await self._on_dead_token(old_hash)
            raise InvalidTokenError()

        user = await self._store.find_by_email(record.owner_email)
        if user is None:
            await self._store.revoke_refresh_token(old_hash)
            REFRESH_ROTATIONS.labels("invalid").inc()
            logger.info("Refresh token %s revoked: owner no longer exists", _short(old_hash))
            raise InvalidTokenError()

        plaintext, new_hash, expires_at = self._new_refresh_token()
        if not await self._store.rotate_refresh_token(old_hash, new_hash, expires_at):
            # Another request consumed this token between lookup and rotation.
            await self._on_reuse(record)
            raise InvalidTokenError()

        REFRESH_ROTATIONS.labels("rotated").inc()
        audit_logger.info(
            "auth.refresh email=%s family=%s old=%s new=%s",
            user.email,
            _short(record.family_id),
            _short(old_hash),
            _short(new_hash),
        )
        return self._pair(user.public(), plaintext, expires_at)

    async def revoke(self, presented_token: Optional[str]) -> None:
        """Revoke the presented token if it exists; idempotent"""
        if not presented_token:
            return
        await self._store.revoke_refresh_token(self._issuer.hash_refresh_token(presented_token))

    async def _on_dead_token(self, token_hash: str) -> None:
        record = await self._store.get_refresh_token(token_hash)
        if record is not None and record.revoked:
            await self._on_reuse(record)
            return
        REFRESH_ROTATIONS.labels("invalid").inc()

    async def _on_reuse(self, record: RefreshTokenRecord) -> None:
        REFRESH_ROTATIONS.labels("reuse").inc()
        revoked = 0
        if self.revoke_family_on_reuse:
            revoked = await self._store.revoke_refresh_family(record.family_id)
        audit_logger.warning(
            "auth.refresh.reuse email=%s family=%s token=%s family_revoked=%d",
            record.owner_email,
            _short(record.family_id),
            _short(record.token_hash),
            revoked,
        )
