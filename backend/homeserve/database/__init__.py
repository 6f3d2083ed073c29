"""
SQLAlchemy engine, session factory and declarative base for homeserve.

SQLite urls get a thread-shareable connection so routes that hand work to
``asyncio.to_thread`` keep working; any other backend gets a small pool.
"""

from __future__ import annotations

import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from homeserve.core.config import settings

logger = logging.getLogger(__name__)


def engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        return options
    options.update(pool_size=5, max_overflow=10, pool_recycle=300)
    return options


engine: Engine = create_engine(settings.database_url, **engine_options(settings.database_url))


@event.listens_for(engine, "connect")
def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    logger.debug("Opened database connection for %s", engine.url.get_backend_name())


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session. Services commit their own work; leftovers roll back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = ["Base", "SessionLocal", "engine", "engine_options", "get_db"]
