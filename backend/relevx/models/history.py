"""Search history models: per-project memory across research runs."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

from relevx.models.project import utcnow


class ProcessedUrl(BaseModel):
    """A URL that has been surfaced for a project in some run."""

    url: str
    normalized_url: str
    first_seen_at: datetime = Field(default_factory=utcnow)
    times_found: int = 1
    last_relevancy_score: float | None = None
    was_included: bool = False


class QueryPerformance(BaseModel):
    """Cumulative yield of a search query for a project."""

    query: str
    times_used: int = 0  # runs that issued the query, however many iterations repeated it
    urls_found: int = 0
    relevant_urls_found: int = 0
    success_rate: float = 0.0  # relevant_urls_found / urls_found * 100
    last_used_at: datetime = Field(default_factory=utcnow)


class QueryStats(BaseModel):
    """Per-run delta for one query, folded into QueryPerformance."""

    urls_found: int = 0
    relevant_urls_found: int = 0


class SearchHistoryRecord(SQLModel, table=True):
    """One row per project; lists are stored as JSON documents."""

    __tablename__ = "search_history"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    project_id: str = SQLField(index=True, unique=True)
    processed_urls: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    query_performance: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=utcnow)
    updated_at: datetime = SQLField(default_factory=utcnow)
