"""Background cleanup of expired refresh tokens and stale failed-login counters."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from authcore.services.auth_service import AuthService

logger = logging.getLogger(__name__)


class TokenJanitor:
    """Periodically removes expired refresh tokens and stale failed-login counters.

    Revoked but unexpired records are kept so a replayed token is still
    recognised as reuse.
    """

    def __init__(self, auth_service: AuthService, interval_seconds: float) -> None:
        self._auth_service = auth_service
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._heartbeat: float = 0.0
        self._removed_count: int = 0

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running() or self.interval_seconds <= 0:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="token-janitor")
        logger.info("Token janitor started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None
        logger.info("Token janitor stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "removed_count": self._removed_count,
        }

    async def run_once(self) -> int:
        removed = await self._auth_service.cleanup_expired_tokens()
        self._removed_count += removed
        self._heartbeat = time.time()
        return removed

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                logger.exception("Expired token cleanup failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
