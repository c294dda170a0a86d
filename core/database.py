"""
SQLAlchemy engine and session factory.

One engine per application. Services receive the session factory and open a
short-lived session per operation with ``session_scope``.

Usage:
    factory = init_database("sqlite:///resort_pos.db")
    with session_scope(factory) as db:
        db.add(record)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import DatabaseUnavailableError


class Base(DeclarativeBase):
    pass


def init_database(database_url: str) -> sessionmaker:
    """
    Create the engine, create missing tables and return a session factory.

    In-memory sqlite ("sqlite://") is shared across threads through a
    StaticPool so tests and payment poll threads see the same database.

    Raises:
        DatabaseUnavailableError: engine or schema creation failed
    """
    # Register the mapped classes on Base.metadata
    import models.records  # noqa: F401

    engine_kwargs = {"echo": False, "future": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool

    try:
        engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(bind=engine)
    except (SQLAlchemyError, ImportError) as e:
        raise DatabaseUnavailableError(database_url, str(e)) from e

    return sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
