"""Engine and session helpers for the learning-path persistence layer."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from .base import Base

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def build_engine(database_url: str, *, echo: bool = False, pool_size: int = 10, max_overflow: int = 10) -> Engine:
    kwargs: dict[str, object] = {
        "echo": echo,
        "future": True,
        "pool_pre_ping": True,
    }

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = pool_size
        kwargs["max_overflow"] = max_overflow

    return create_engine(database_url, **kwargs)


def _engine_from_settings(settings: Settings) -> Engine:
    if not settings.database_url:
        raise RuntimeError("LEARNPATH_DATABASE_URL must be configured before using the database.")
    return build_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = _engine_from_settings(get_settings())
        _session_factory = make_session_factory(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


def create_schema(engine: Engine) -> None:
    """Create every table directly; deployments run the Alembic migrations instead."""
    from . import models  # noqa: F401

    Base.metadata.create_all(engine)


@contextmanager
def session_scope(
    *,
    commit: bool = True,
    factory: Optional[sessionmaker[Session]] = None,
) -> Generator[Session, None, None]:
    session = (factory or get_session_factory())()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "build_engine",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
