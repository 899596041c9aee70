"""Delivery log for the compiled report of a run, pending external delivery."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import JSON, Column
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

from relevx.models.project import utcnow


class DeliveryStats(BaseModel):
    total_results: int = 0
    included_results: int = 0
    average_relevancy_score: float = 0.0
    search_queries_used: int = 0
    iterations_required: int = 0
    urls_fetched: int = 0
    urls_successful: int = 0


class DeliveryLog(SQLModel, table=True):
    """One per completed run with results."""

    __tablename__ = "delivery_log"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    project_id: str = SQLField(index=True)

    report_title: str = ""
    report_summary: str = ""
    report_markdown: str = ""
    average_score: float = 0.0
    result_count: int = 0

    stats: dict = SQLField(default_factory=dict, sa_column=Column(JSON))
    search_result_ids: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))

    destination: str = "none"
    status: str = "pending"  # "pending" | "success" | "error"
    error: str | None = None

    prepared_at: datetime = SQLField(default_factory=utcnow)
    delivered_at: datetime | None = None
    research_started_at: datetime | None = None
    research_completed_at: datetime | None = None
