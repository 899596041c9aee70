"""Project models for scheduled research.

Includes:
- ResearchUser: owner record (fallback delivery address)
- ResearchProject: user-defined research task with cadence and delivery config
- SearchParameters / DeliveryConfig: typed views over the JSON columns
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

Frequency = Literal["daily", "weekly", "monthly"]
ProjectStatus = Literal["draft", "active", "running", "paused", "error"]
DateRangePreference = Literal[
    "last_24h", "last_week", "last_month", "last_3months", "last_year", "custom"
]

FREQUENCIES: tuple[str, ...] = ("daily", "weekly", "monthly")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; tag them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SearchParameters(BaseModel):
    """Search customization stored in ResearchProject.search_parameters."""

    priority_domains: list[str] = Field(default_factory=list)
    excluded_domains: list[str] = Field(default_factory=list)
    date_range_preference: DateRangePreference | None = None
    language: str | None = None  # ISO 639-1, e.g. "en"
    region: str | None = None  # ISO 3166-1 alpha-2, e.g. "US"
    required_keywords: list[str] = Field(default_factory=list)
    excluded_keywords: list[str] = Field(default_factory=list)


class EmailDelivery(BaseModel):
    address: str
    subject: str | None = None


class DeliveryConfig(BaseModel):
    email: EmailDelivery | None = None


class ResearchUser(SQLModel, table=True):
    """Project owner. Only the email is used by the engine."""

    __tablename__ = "research_user"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = ""
    created_at: datetime = SQLField(default_factory=utcnow)


class ResearchProject(SQLModel, table=True):
    """A persistent research task with a goal, cadence, and delivery config."""

    __tablename__ = "research_project"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    title: str = ""
    description: str  # natural-language research goal
    frequency: str = "daily"  # "daily" | "weekly" | "monthly"
    results_destination: str = "email"  # "email" | "none"
    delivery_time: str = "09:00"  # HH:MM, 15-minute increments
    timezone: str = "UTC"  # IANA identifier
    search_parameters: dict = SQLField(default_factory=dict, sa_column=Column(JSON))
    delivery_config: dict = SQLField(default_factory=dict, sa_column=Column(JSON))

    relevancy_threshold: int = 60  # 0-100
    min_results: int = 5
    max_results: int = 20

    status: str = "draft"  # "draft" | "active" | "running" | "paused" | "error"
    last_run_at: datetime | None = None
    next_run_at: datetime | None = SQLField(default=None, index=True)
    last_error: str | None = None

    created_at: datetime = SQLField(default_factory=utcnow)
    updated_at: datetime = SQLField(default_factory=utcnow)

    @property
    def search_params(self) -> SearchParameters:
        return SearchParameters.model_validate(self.search_parameters or {})

    @property
    def delivery(self) -> DeliveryConfig:
        return DeliveryConfig.model_validate(self.delivery_config or {})
