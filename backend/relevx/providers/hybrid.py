"""HybridProvider — one LLMProvider composed from three.

Delegates query generation, pre-filter + relevance scoring, and report
compilation to separate providers, e.g. a cheap model for queries and
analysis and a stronger one for the report.
"""

from __future__ import annotations

from relevx.models.research import CompiledReport
from relevx.providers.base import (
    CandidateDecision,
    CandidateToFilter,
    ContentToAnalyze,
    GeneratedQuery,
    LLMProvider,
    QueryGenerationOptions,
    RelevanceScore,
    ReportTone,
    ResultForReport,
)


class HybridProvider(LLMProvider):
    name = "hybrid"

    def __init__(
        self,
        query_provider: LLMProvider,
        analysis_provider: LLMProvider,
        report_provider: LLMProvider,
    ) -> None:
        self.query_provider = query_provider
        self.analysis_provider = analysis_provider
        self.report_provider = report_provider

    async def generate_queries(
        self,
        goal: str,
        additional_context: str | None = None,
        options: QueryGenerationOptions | None = None,
    ) -> list[GeneratedQuery]:
        return await self.query_provider.generate_queries(goal, additional_context, options)

    async def filter_candidates(
        self, candidates: list[CandidateToFilter], goal: str
    ) -> list[CandidateDecision] | None:
        return await self.analysis_provider.filter_candidates(candidates, goal)

    async def score_relevance(
        self,
        goal: str,
        items: list[ContentToAnalyze],
        threshold: int = 60,
        batch_size: int = 10,
    ) -> list[RelevanceScore]:
        return await self.analysis_provider.score_relevance(goal, items, threshold, batch_size)

    async def compile_report(
        self,
        goal: str,
        results: list[ResultForReport],
        tone: ReportTone = "professional",
        max_length: int = 5000,
    ) -> CompiledReport:
        return await self.report_provider.compile_report(goal, results, tone, max_length)
