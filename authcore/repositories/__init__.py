"""Credential store drivers"""

from datetime import datetime
from typing import Callable

from authcore.config import Settings
from authcore.core.database import build_engine, build_session_factory, init_db
from authcore.core.security import utcnow
from authcore.repositories.base import CredentialStore, LockWindow
from authcore.repositories.memory import MemoryCredentialStore
from authcore.repositories.sql import SqlCredentialStore


def build_credential_store(settings: Settings, clock: Callable[[], datetime] = utcnow) -> CredentialStore:
    """Pick the store driver from ``STORE_DRIVER``"""
    if settings.STORE_DRIVER == "sql":
        engine = build_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=settings.DEBUG,
        )
        init_db(engine)
        return SqlCredentialStore(build_session_factory(engine), clock=clock)
    return MemoryCredentialStore(clock=clock)


__all__ = [
    "CredentialStore",
    "LockWindow",
    "MemoryCredentialStore",
    "SqlCredentialStore",
    "build_credential_store",
]
