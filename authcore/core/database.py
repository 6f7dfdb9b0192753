"""Database configuration and session management"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create base class for models
Base = declarative_base()


def build_engine(database_url: str, pool_size: int = 10, max_overflow: int = 20, echo: bool = False) -> Engine:
    """
    Create an engine for the credential store

    SQLite gets a thread-safe connection setup since store calls run in the
    threadpool; in-memory SQLite shares one connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in {"sqlite://", "sqlite:///"}:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=echo,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create credential store tables if missing"""
    # Import models so metadata is populated.
    from authcore import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Credential store tables ready (%s)", engine.dialect.name)
