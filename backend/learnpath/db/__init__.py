"""Database utilities for the learning-path engine."""

from .session import (
    build_engine,
    create_schema,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
