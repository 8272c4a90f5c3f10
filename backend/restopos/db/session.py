"""Engine and request-scoped sessions."""

from collections.abc import Generator
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from restopos.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        # Row locks on orders and sequences hold a connection for the whole request
        return {"pool_size": 20, "max_overflow": 40, "pool_pre_ping": True, "pool_recycle": 3600}
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
        # Every session must see the same in-memory database
        options["poolclass"] = StaticPool
    return options


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``, enforcing foreign keys on SQLite."""
    new_engine = create_engine(url, echo=False, **_engine_options(url))
    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return new_engine


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DbSession = Annotated[Session, Depends(get_db)]
