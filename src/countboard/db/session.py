"""Engine and session factory for the counter store."""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from countboard.core.settings import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the counter tables."""


# Populate Base.metadata before anyone calls create_all.
import countboard.models  # noqa: E402,F401


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are handed between FastAPI's worker threads, so the
    same-thread check is disabled for them.
    """
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=settings.sql_debug,
    )


engine = build_engine(settings.effective_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create the counter tables directly, bypassing Alembic."""
    logger.info("Creating tables on %s", engine.url.render_as_string(hide_password=True))
    Base.metadata.create_all(bind=engine)
