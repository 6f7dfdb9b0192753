"""Failed-login lockout with exponential backoff."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from authcore.config import Settings
from authcore.core.metrics import ACCOUNT_LOCKOUTS
from authcore.core.security import utcnow
from authcore.repositories.base import CredentialStore
from authcore.schemas.auth import FailedLoginEntry

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authcore.audit")


class LockoutPolicy:
    """
    Per-identity lockout.

    Once ``threshold`` failures accumulate, every further failure outside a
    lock sets ``locked_until = now + min(max_minutes, 2 ** (attempts - threshold))``
    minutes. Failures while locked are not counted, so spamming a locked
    account cannot push the lock further out.
    """

    def __init__(
        self,
        store: CredentialStore,
        threshold: int = 5,
        max_minutes: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.threshold = threshold
        self.max_minutes = max_minutes
        self._clock = clock

    @classmethod
    def from_settings(
        cls, store: CredentialStore, settings: Settings, clock: Callable[[], datetime] = utcnow
    ) -> "LockoutPolicy":
        return cls(store, settings.LOCKOUT_THRESHOLD, settings.LOCKOUT_MAX_MINUTES, clock)

    def lock_duration(self, attempts: int) -> Optional[timedelta]:
        if attempts < self.threshold:
            return None
        exponent = attempts - self.threshold
        # Past the cap the exact power does not matter.
        if exponent >= self.max_minutes.bit_length():
            return timedelta(minutes=self.max_minutes)
        return timedelta(minutes=min(self.max_minutes, 2 ** exponent))

    async def record_failure(self, identity: str) -> FailedLoginEntry:
        applied = []

        def lock_window(attempts: int) -> Optional[timedelta]:
            duration = self.lock_duration(attempts)
            if duration is not None:
                applied.append(duration)
            return duration

        entry = await self._store.record_failed_login(identity, lock_window)
        if applied and entry.locked_until is not None:
            ACCOUNT_LOCKOUTS.inc()
            audit_logger.warning(
                "auth.lockout identity=%s attempts=%d locked_until=%s",
                identity,
                entry.attempts,
                entry.locked_until.isoformat(),
            )
        return entry

    async def reset(self, identity: str) -> None:
        await self._store.reset_failed_logins(identity)

    async def locked_until(self, identity: str) -> Optional[datetime]:
        """Return the lock expiry if the identity is locked right now"""
        entry = await self._store.get_failed_login(identity)
        if entry is None or not entry.is_locked(self._clock()):
            return None
        return entry.locked_until

    async def is_locked(self, identity: str) -> bool:
        return await self.locked_until(identity) is not None
