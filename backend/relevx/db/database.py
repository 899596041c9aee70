"""Database setup — SQLite with WAL mode via SQLModel/SQLAlchemy.

Design decisions:
- SQLModel combines Pydantic v2 + SQLAlchemy in one model class
- SQLite WAL mode: scheduler runs and manual triggers may read concurrently
- Each persisted entity is a document-style row (JSON columns for nested lists),
  keyed by (user_id, project_id[, id]); no multi-row transactions are assumed

What goes where:
- research_project, research_user: project configuration + lifecycle state
- search_history: per-project processed URLs and query performance
- search_result, delivery_log: per-run outputs
"""

from __future__ import annotations

import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from relevx.config import settings


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode for concurrent reads while a research run is writing."""
    if not settings.database_url.startswith("sqlite"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


_url = get_database_url()
engine = create_engine(
    _url,
    echo=False,
    connect_args={"check_same_thread": False} if _url.startswith("sqlite") else {},
)


def create_db_and_tables(bind: Engine | None = None) -> None:
    """Create all tables defined by SQLModel metadata."""
    # Table classes must be imported so SQLModel metadata registers them
    from relevx.models import delivery, history, project, search_result  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
