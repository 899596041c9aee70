"""ClaudeProvider — LLMProvider backed by Anthropic structured outputs.

All four steps go through LLMLayer.complete_structured with a Pydantic
response model, so parsing and validation are handled by Instructor.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from relevx.config import ModelTier, settings
from relevx.engine.filters import normalize_url
from relevx.llm import prompts
from relevx.models.research import CompiledReport, ReportDraft
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

logger = logging.getLogger(__name__)


class QueryBatch(BaseModel):
    """LLM output for query generation."""

    queries: list[GeneratedQuery] = Field(default_factory=list)


class CandidateDecisions(BaseModel):
    """LLM output for the title/snippet pre-filter."""

    decisions: list[CandidateDecision] = Field(default_factory=list)


class RelevanceBatch(BaseModel):
    """LLM output for one relevance-scoring batch."""

    results: list[RelevanceScore] = Field(default_factory=list)


def average_score(results: list[ResultForReport]) -> float:
    if not results:
        return 0.0
    return float(round(sum(r.score for r in results) / len(results)))


class ClaudeProvider(LLMProvider):
    """LLMProvider over an LLMLayer (or MockLLMLayer in tests)."""

    name = "claude"

    def __init__(
        self,
        llm,
        query_tier: ModelTier | None = None,
        analysis_tier: ModelTier | None = None,
        report_tier: ModelTier | None = None,
    ) -> None:
        self.llm = llm
        self.query_tier = query_tier or settings.query_model_tier
        self.analysis_tier = analysis_tier or settings.analysis_model_tier
        self.report_tier = report_tier or settings.report_model_tier

    async def generate_queries(
        self,
        goal: str,
        additional_context: str | None = None,
        options: QueryGenerationOptions | None = None,
    ) -> list[GeneratedQuery]:
        options = options or QueryGenerationOptions()
        user_message = prompts.build_query_prompt(
            goal,
            count=options.count,
            additional_context=additional_context,
            previous_queries=options.previous_queries[:3],
            iteration=options.iteration,
            focus_recent=options.focus_recent,
        )
        result, meta = await self.llm.complete_structured(
            messages=[{"role": "user", "content": user_message}],
            model_tier=self.query_tier,
            response_model=QueryBatch,
            system=prompts.QUERY_GENERATION_SYSTEM,
        )
        queries = [q for q in result.queries if q.query.strip()][: options.count]
        logger.info("Generated %d queries (iteration %d, $%.4f)", len(queries), options.iteration, meta.cost)
        return queries

    async def filter_candidates(
        self, candidates: list[CandidateToFilter], goal: str
    ) -> list[CandidateDecision] | None:
        if not candidates:
            return []
        result, _meta = await self.llm.complete_structured(
            messages=[{"role": "user", "content": prompts.build_filter_prompt(goal, candidates)}],
            model_tier=self.analysis_tier,
            response_model=CandidateDecisions,
            system=prompts.CANDIDATE_FILTER_SYSTEM,
        )
        return result.decisions

    async def score_relevance(
        self,
        goal: str,
        items: list[ContentToAnalyze],
        threshold: int = 60,
        batch_size: int = 10,
    ) -> list[RelevanceScore]:
        system = self.llm.build_cached_system(prompts.RELEVANCY_SYSTEM)
        scores: list[RelevanceScore] = []
        batch_size = max(1, batch_size)
        for start in range(0, len(items), batch_size):
            batch = items[start:start + batch_size]
            wanted = {normalize_url(item.url): item.url for item in batch}
            result, _meta = await self.llm.complete_structured(
                messages=[{
                    "role": "user",
                    "content": prompts.build_relevancy_prompt(goal, batch, threshold),
                }],
                model_tier=self.analysis_tier,
                response_model=RelevanceBatch,
                system=system,
            )
            # Echoed URLs match by normalized form; invented URLs are dropped
            for score in result.results:
                requested = wanted.get(normalize_url(score.url))
                if requested is not None:
                    scores.append(score.model_copy(update={"url": requested}))
        return scores

    async def compile_report(
        self,
        goal: str,
        results: list[ResultForReport],
        tone: ReportTone = "professional",
        max_length: int = 5000,
    ) -> CompiledReport:
        draft, meta = await self.llm.complete_structured(
            messages=[{
                "role": "user",
                "content": prompts.build_report_prompt(goal, results, tone, max_length),
            }],
            model_tier=self.report_tier,
            response_model=ReportDraft,
            system=prompts.REPORT_SYSTEM,
            max_tokens=max(settings.default_max_tokens, max_length),
        )
        logger.info("Compiled report over %d results ($%.4f)", len(results), meta.cost)
        return CompiledReport(
            title=draft.title,
            summary=draft.summary,
            markdown=draft.markdown,
            average_score=average_score(results),
            result_count=len(results),
        )
