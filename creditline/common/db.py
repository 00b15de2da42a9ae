"""Database bootstrap helpers shared by all services."""

from datetime import datetime, timezone

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from creditline.common.config import settings


# Single SQLAlchemy engine per process.
engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in local runs and tests).
JSONDocument = JSON().with_variant(postgresql.JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_session_factory(dsn: str) -> sessionmaker:
    """Build an isolated engine + session factory (scripts and tests)."""

    return sessionmaker(
        bind=create_engine(dsn, pool_pre_ping=True),
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


def dialect_insert(db, model):
    """Return an `INSERT` construct supporting `ON CONFLICT` for the bound dialect."""

    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize timestamps read back from stores that drop tzinfo (SQLite)."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
