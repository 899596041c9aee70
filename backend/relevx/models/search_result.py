"""SearchResult — one accepted, scored piece of web content for a run."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlmodel import JSON, Column
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

from relevx.models.project import utcnow


class SearchResultRecord(SQLModel, table=True):
    """Persisted search result. Immutable once written."""

    __tablename__ = "search_result"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    project_id: str = SQLField(index=True)

    url: str
    normalized_url: str = SQLField(index=True)
    source_query: str = "unknown"
    search_engine: str = ""

    snippet: str = ""
    full_content: str = ""
    relevancy_score: float = 0.0  # 0-100
    relevancy_reason: str = ""
    key_points: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))

    # Page metadata
    title: str = ""
    description: str = ""
    author: str | None = None
    published_date: str | None = None
    image_url: str | None = None
    image_alt: str | None = None
    content_type: str | None = None
    word_count: int = 0

    fetch_status: str = "success"  # "success" | "error" | "timeout" | "skipped"
    fetched_at: datetime = SQLField(default_factory=utcnow)
    analyzed_at: datetime = SQLField(default_factory=utcnow)
