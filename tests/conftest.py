from datetime import datetime, timedelta, timezone

import pytest

from authcore.config import Settings
from authcore.core.database import build_engine, build_session_factory, init_db
from authcore.repositories.memory import MemoryCredentialStore
from authcore.repositories.sql import SqlCredentialStore
from authcore.services.auth_service import AuthService


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = {
        "BCRYPT_ROUNDS": 4,
        "TOKEN_CLEANUP_INTERVAL_SECONDS": 0,
        "SECRET_KEY": "test-secret-key-that-is-long-enough-0123456789",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryCredentialStore(clock=clock)


@pytest.fixture
def sql_store(tmp_path, clock):
    engine = build_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    init_db(engine)
    yield SqlCredentialStore(build_session_factory(engine), clock=clock)
    engine.dispose()


@pytest.fixture
def auth_service(store, settings, clock):
    return AuthService(store, settings, clock=clock)
