"""Run-level models: options in, outcome out. Not persisted."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from relevx.models.search_result import SearchResultRecord


class ResearchOptions(BaseModel):
    """Per-run overrides. Unset limits fall back to the project, then to settings."""

    model_config = {"arbitrary_types_allowed": True}

    max_iterations: int | None = None
    min_results: int | None = None
    max_results: int | None = None
    relevancy_threshold: int | None = None
    concurrent_extractions: int | None = None
    queries_per_iteration: int | None = None
    max_candidates_per_iteration: int | None = None
    ignore_frequency_check: bool = False

    # Provider overrides (LLMProvider / SearchProvider / ContentExtractor instances)
    llm_provider: Any = None
    search_provider: Any = None
    extractor: Any = None


class ReportDraft(BaseModel):
    """Structured LLM output for report compilation."""

    title: str = Field(description="Short, descriptive report title")
    summary: str = Field(description="2-3 sentence executive summary of the findings")
    markdown: str = Field(description="Full report body in markdown")


class CompiledReport(BaseModel):
    title: str
    summary: str
    markdown: str
    average_score: float = 0.0
    result_count: int = 0


@dataclass
class ResearchResult:
    """Outcome of one research run."""

    success: bool
    project_id: str
    relevant_results: list[SearchResultRecord] = field(default_factory=list)
    total_results_analyzed: int = 0
    iterations_used: int = 0
    queries_generated: list[str] = field(default_factory=list)
    queries_executed: list[str] = field(default_factory=list)
    urls_fetched: int = 0
    urls_successful: int = 0
    urls_relevant: int = 0
    report: CompiledReport | None = None
    delivery_log_id: str | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
