"""Provider abstractions — the interfaces the research orchestrator is written against.

Three capabilities, each swappable:
- LLMProvider: query generation, candidate pre-filter, relevance scoring, report compilation
- SearchProvider: web search with country/language/domain/date filters
- ContentExtractor: fetch a URL and return readable text plus page metadata

Data passed across these seams are plain Pydantic models.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from relevx.models.history import QueryPerformance
from relevx.models.project import utcnow
from relevx.models.research import CompiledReport

logger = logging.getLogger(__name__)

QueryType = Literal["broad", "specific", "question", "temporal"]
FetchStatus = Literal["success", "error", "timeout", "skipped"]
ReportTone = Literal["professional", "casual", "technical"]


# === LLM data types ===


class GeneratedQuery(BaseModel):
    query: str = Field(description="The search query string")
    type: QueryType = Field(default="broad", description="Query strategy")
    reasoning: str = Field(default="", description="Why this query was generated")


class QueryGenerationOptions(BaseModel):
    count: int = 5
    focus_recent: bool = False
    iteration: int = 1
    previous_queries: list[QueryPerformance] = Field(default_factory=list)


class CandidateToFilter(BaseModel):
    url: str
    title: str = ""
    description: str = ""


class CandidateDecision(BaseModel):
    url: str
    keep: bool = True
    reasoning: str = ""


class ContentToAnalyze(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""
    published_date: str | None = None
    metadata: dict = Field(default_factory=dict)


class RelevanceScore(BaseModel):
    url: str
    score: float = Field(ge=0, le=100)
    reasoning: str = ""
    key_points: list[str] = Field(default_factory=list)
    is_relevant: bool = False


class ResultForReport(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0
    key_points: list[str] = Field(default_factory=list)
    published_date: str | None = None
    author: str | None = None
    image_url: str | None = None
    image_alt: str | None = None


# === Search data types ===


class SearchFilters(BaseModel):
    country: str | None = None  # ISO 3166-1 alpha-2
    language: str | None = None  # ISO 639-1
    include_domains: list[str] = Field(default_factory=list)
    exclude_domains: list[str] = Field(default_factory=list)
    date_from: str | None = None  # YYYY-MM-DD
    date_to: str | None = None  # YYYY-MM-DD
    count: int = 5
    offset: int = 0
    safesearch: Literal["off", "moderate", "strict"] | None = None


class SearchHit(BaseModel):
    url: str
    title: str = ""
    description: str = ""
    published_date: str | None = None
    image_url: str | None = None
    image_alt: str | None = None
    language: str | None = None


class SearchResponse(BaseModel):
    query: str
    results: list[SearchHit] = Field(default_factory=list)
    total_count: int = 0


# === Extraction data types ===


class ExtractedContent(BaseModel):
    url: str
    normalized_url: str = ""
    title: str = ""
    snippet: str = ""
    full_content: str = ""
    description: str = ""
    author: str | None = None
    published_date: str | None = None
    content_type: str | None = None
    image_url: str | None = None
    image_alt: str | None = None
    word_count: int = 0
    extraction_method: str | None = None
    fetch_status: FetchStatus = "success"
    error: str | None = None
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def usable(self) -> bool:
        return self.fetch_status == "success" and bool(self.snippet)


# === Interfaces ===


class LLMProvider(ABC):
    """Query generation, relevance scoring and report compilation against a goal."""

    name: str = "llm"

    @abstractmethod
    async def generate_queries(
        self,
        goal: str,
        additional_context: str | None = None,
        options: QueryGenerationOptions | None = None,
    ) -> list[GeneratedQuery]:
        ...

    async def filter_candidates(
        self, candidates: list[CandidateToFilter], goal: str
    ) -> list[CandidateDecision] | None:
        """Title/snippet triage before extraction. None means unsupported."""
        return None

    @abstractmethod
    async def score_relevance(
        self,
        goal: str,
        items: list[ContentToAnalyze],
        threshold: int = 60,
        batch_size: int = 10,
    ) -> list[RelevanceScore]:
        ...

    @abstractmethod
    async def compile_report(
        self,
        goal: str,
        results: list[ResultForReport],
        tone: ReportTone = "professional",
        max_length: int = 5000,
    ) -> CompiledReport:
        ...


class SearchProvider(ABC):
    """Web search backend.

    Subclasses implement `search`; `search_many` fans out concurrently and
    drops failing queries. Requests are spaced by `min_request_interval`.
    """

    name: str = "search"

    def __init__(self, min_request_interval: float = 0.0) -> None:
        self.min_request_interval = min_request_interval
        self._last_request = 0.0
        self._throttle_lock: asyncio.Lock | None = None

    async def _throttle(self) -> None:
        if self.min_request_interval <= 0:
            return
        if self._throttle_lock is None:
            self._throttle_lock = asyncio.Lock()
        async with self._throttle_lock:
            wait = self.min_request_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    @abstractmethod
    async def search(self, query: str, filters: SearchFilters | None = None) -> SearchResponse:
        ...

    async def search_many(
        self, queries: list[str], filters: SearchFilters | None = None
    ) -> dict[str, SearchResponse]:
        """Run queries concurrently; a failing query is logged and omitted."""
        outcomes = await asyncio.gather(
            *(self.search(q, filters) for q in queries),
            return_exceptions=True,
        )
        responses: dict[str, SearchResponse] = {}
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("%s search failed for %r: %s", self.name, query, outcome)
                continue
            responses[query] = outcome
        return responses


class ContentExtractor(ABC):
    """Fetch pages and return readable content. Per-URL failures are reported, not raised."""

    @abstractmethod
    async def extract(self, url: str) -> ExtractedContent:
        ...

    async def extract_many(self, urls: list[str], concurrency: int = 3) -> list[ExtractedContent]:
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _one(url: str) -> ExtractedContent:
            async with semaphore:
                try:
                    return await self.extract(url)
                except Exception as e:
                    logger.warning("Extraction failed for %s: %s", url, e)
                    return ExtractedContent(url=url, fetch_status="error", error=str(e))

        return list(await asyncio.gather(*(_one(u) for u in urls)))
