"""Research Orchestrator — QUERY → SEARCH → DEDUP → EXTRACT → SCORE → REPORT → STORE.

Iterative research loop for one project run:
1. Generate queries (widening on retry iterations)
2. Search all queries concurrently
3. Dedup against this project's history and within the batch, cap candidates
4. Optional LLM pre-filter on title/snippet (fails open)
5. Extract content with bounded concurrency
6. Keyword filters, then relevance scoring against the research goal
7. Stop once enough results are found or no new URLs turn up
8. Rank, compile a report, persist results / delivery log / history, reschedule

Expected failures (unknown project, frequency guard, busy project, provider
errors after retries) come back as ResearchResult(success=False); only
missing providers raise.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

from relevx.config import settings
from relevx.engine.filters import (
    contains_excluded_keyword,
    dedupe_candidates,
    normalize_url,
    passes_keyword_filters,
)
from relevx.engine.history import SearchHistory
from relevx.errors import (
    FrequencyViolationError,
    ProjectBusyError,
    ProjectNotFoundError,
    ProviderNotConfiguredError,
)
from relevx.extract.fetcher import HttpContentExtractor
from relevx.llm.prompts import required_keywords_context
from relevx.models.delivery import DeliveryLog, DeliveryStats
from relevx.models.history import ProcessedUrl, QueryStats
from relevx.models.project import ResearchProject, as_utc, utcnow
from relevx.models.research import CompiledReport, ResearchOptions, ResearchResult
from relevx.models.search_result import SearchResultRecord
from relevx.providers.base import (
    CandidateToFilter,
    ContentExtractor,
    ContentToAnalyze,
    ExtractedContent,
    LLMProvider,
    QueryGenerationOptions,
    ResultForReport,
    SearchFilters,
    SearchHit,
    SearchProvider,
)
from relevx.retry import RetryPolicy
from relevx.scheduling import (
    calculate_date_range,
    calculate_next_run_at,
    validate_frequency,
)

logger = logging.getLogger(__name__)

NO_RESULTS_SUMMARY = "No relevant results were found."
RECENT_PREFERENCES = ("last_24h", "last_week")


@dataclass
class RunLimits:
    max_iterations: int
    min_results: int
    max_results: int
    threshold: int
    concurrency: int
    queries_per_iteration: int
    max_candidates: int


@dataclass
class RunState:
    """Accumulators for one run. Mutated only between awaits of the loop."""

    history: SearchHistory
    results: list[SearchResultRecord] = field(default_factory=list)
    processed: dict[str, ProcessedUrl] = field(default_factory=dict)
    query_stats: dict[str, QueryStats] = field(default_factory=dict)
    queries_generated: list[str] = field(default_factory=list)
    queries_executed: list[str] = field(default_factory=list)
    iterations: int = 0
    urls_fetched: int = 0
    urls_successful: int = 0
    urls_analyzed: int = 0

    def seen(self) -> set[str]:
        return self.history.normalized_urls | set(self.processed)

    def add_query_stats(self, query: str, found: int, relevant: int) -> None:
        stats = self.query_stats.setdefault(query, QueryStats())
        stats.urls_found += found
        stats.relevant_urls_found += relevant


def placeholder_report(title: str) -> CompiledReport:
    return CompiledReport(
        title=title,
        summary=NO_RESULTS_SUMMARY,
        markdown=f"# {title}\n\nNo relevant results found for this research period.",
        average_score=0.0,
        result_count=0,
    )


class ResearchOrchestrator:
    """Runs research for one project at a time against injected collaborators.

    Usage:
        orchestrator = ResearchOrchestrator(store, llm_provider=llm, search_provider=search)
        result = await orchestrator.run(user_id, project_id)
    """

    def __init__(
        self,
        store,
        llm_provider: LLMProvider | None = None,
        search_provider: SearchProvider | None = None,
        extractor: ContentExtractor | None = None,
        email_sender=None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.llm_provider = llm_provider
        self.search_provider = search_provider
        self.extractor = extractor
        self.email_sender = email_sender
        self.retry = retry_policy or RetryPolicy()

    async def run(
        self,
        user_id: str,
        project_id: str,
        options: ResearchOptions | None = None,
    ) -> ResearchResult:
        options = options or ResearchOptions()
        llm = options.llm_provider or self.llm_provider
        search = options.search_provider or self.search_provider
        if llm is None or search is None:
            raise ProviderNotConfiguredError(
                "Research providers not set. Call set_default_providers() or pass providers in options."
            )
        extractor = options.extractor or self.extractor or HttpContentExtractor()

        started_at = utcnow()
        clock = time.monotonic()

        project = self.store.get_project(user_id, project_id)
        if project is None:
            return self._failed(project_id, str(ProjectNotFoundError(project_id)), started_at, clock)

        if not options.ignore_frequency_check and not validate_frequency(
            project.frequency, project.last_run_at, started_at
        ):
            error = FrequencyViolationError(
                "Project cannot be run more than once per day. "
                f"Last run: {project.last_run_at.isoformat()}"
            )
            logger.info("Skipping project %s: %s", project_id, error)
            return self._failed(project_id, str(error), started_at, clock)

        if project.status == "running":
            error = ProjectBusyError(f"Project {project_id} is already running")
            logger.info("Skipping project %s: already running", project_id)
            return self._failed(project_id, str(error), started_at, clock)

        self.store.update_project(user_id, project_id, status="running")
        logger.info("Starting research for project %s ('%s')", project_id, project.title)

        try:
            return await self._execute(
                user_id, project, options, llm, search, extractor, started_at, clock
            )
        except Exception as e:
            logger.error("Research for project %s failed: %s", project_id, e, exc_info=True)
            try:
                self.store.update_project(user_id, project_id, status="error", last_error=str(e))
            except Exception as update_error:
                logger.error("Failed to mark project %s as error: %s", project_id, update_error)
            return self._failed(project_id, str(e) or type(e).__name__, started_at, clock)

    # -- Run body ----------------------------------------------------------

    async def _execute(
        self,
        user_id: str,
        project: ResearchProject,
        options: ResearchOptions,
        llm: LLMProvider,
        search: SearchProvider,
        extractor: ContentExtractor,
        started_at: datetime,
        clock: float,
    ) -> ResearchResult:
        limits = self._resolve_limits(project, options)
        params = project.search_params
        state = RunState(history=self.store.get_search_history(user_id, project.id))
        filters = self._build_filters(project)
        context = required_keywords_context(params.required_keywords)

        while state.iterations < limits.max_iterations:
            state.iterations += 1
            logger.info(
                "Project %s: iteration %d/%d", project.id, state.iterations, limits.max_iterations
            )
            exhausted = await self._run_iteration(
                user_id, project, limits, state, llm, search, extractor, filters, context
            )
            if exhausted:
                logger.info("Project %s: no new URLs found, stopping", project.id)
                break
            if len(state.results) >= limits.min_results:
                logger.info(
                    "Project %s: %d results (minimum %d), stopping",
                    project.id, len(state.results), limits.min_results,
                )
                break
            logger.info(
                "Project %s: only %d/%d results so far", project.id, len(state.results), limits.min_results
            )

        # Stable sort: equal scores keep encounter order
        ranked = sorted(state.results, key=lambda r: r.relevancy_score, reverse=True)[: limits.max_results]
        for record in ranked:
            entry = state.processed.get(record.normalized_url)
            if entry is not None:
                entry.was_included = True
        logger.info(
            "Project %s: final %d results (from %d relevant)", project.id, len(ranked), len(state.results)
        )

        report = await self._compile_report(llm, project, ranked)

        result_ids = self.store.save_search_results(ranked)
        delivery_log_id = None
        if ranked:
            delivery_log_id = await self._record_delivery(
                user_id, project, report, ranked, result_ids, state, started_at
            )

        self.store.update_search_history(
            user_id, project.id, list(state.processed.values()), state.query_stats
        )

        completed_at = utcnow()
        # Always move past the slot being served, even if the run finished before it
        reschedule_from = completed_at
        if project.next_run_at is not None:
            reschedule_from = max(completed_at, as_utc(project.next_run_at))
        next_run_at = calculate_next_run_at(
            project.frequency, project.delivery_time, project.timezone, reschedule_from
        )
        self.store.update_project(
            user_id,
            project.id,
            status="active",
            last_run_at=started_at,
            next_run_at=next_run_at,
            last_error=None,
        )

        return ResearchResult(
            success=True,
            project_id=project.id,
            relevant_results=ranked,
            total_results_analyzed=state.urls_analyzed,
            iterations_used=state.iterations,
            queries_generated=state.queries_generated,
            queries_executed=state.queries_executed,
            urls_fetched=state.urls_fetched,
            urls_successful=state.urls_successful,
            urls_relevant=len(state.results),
            report=report,
            delivery_log_id=delivery_log_id,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((time.monotonic() - clock) * 1000),
        )

    async def _run_iteration(
        self,
        user_id: str,
        project: ResearchProject,
        limits: RunLimits,
        state: RunState,
        llm: LLMProvider,
        search: SearchProvider,
        extractor: ContentExtractor,
        filters: SearchFilters,
        context: str | None,
    ) -> bool:
        """One pass of the loop. Returns True when the search space is exhausted."""
        params = project.search_params
        goal = project.description

        # 1. Queries
        query_options = QueryGenerationOptions(
            count=limits.queries_per_iteration,
            focus_recent=params.date_range_preference in RECENT_PREFERENCES,
            iteration=state.iterations,
            previous_queries=state.history.top_queries(3),
        )
        generated = await self.retry.run(
            lambda: llm.generate_queries(goal, context, query_options),
            description="query generation",
        )
        queries = list(dict.fromkeys(q.query.strip() for q in generated if q.query.strip()))
        state.queries_generated.extend(queries)
        logger.info("Generated %d queries", len(queries))

        # 2. Search
        responses = await search.search_many(queries, filters) if queries else {}
        state.queries_executed.extend(responses.keys())
        url_to_query: dict[str, str] = {}
        urls_by_query: dict[str, set[str]] = {}
        hits: list[SearchHit] = []
        for query, response in responses.items():
            urls_by_query[query] = set()
            for hit in response.results:
                key = normalize_url(hit.url)
                url_to_query.setdefault(key, query)
                urls_by_query[query].add(key)
                hits.append(hit)

        # 3. Dedup, cheap keyword drop, cap
        unique = dedupe_candidates(hits, seen=state.seen())
        candidates = [
            h for h in unique
            if not contains_excluded_keyword(f"{h.title} {h.description}", params.excluded_keywords)
        ][: limits.max_candidates]
        logger.info(
            "Found %d unique URLs, %d kept for extraction", len(unique), len(candidates)
        )

        accepted_keys: set[str] = set()
        try:
            if not candidates:
                return True

            for hit in candidates:
                key = normalize_url(hit.url)
                state.processed[key] = ProcessedUrl(
                    url=hit.url, normalized_url=key, first_seen_at=utcnow()
                )

            # 4. Optional pre-filter
            to_fetch = await self._prefilter(llm, goal, candidates)

            # 5. Extract
            hit_by_key = {normalize_url(h.url): h for h in to_fetch}
            extracted = await extractor.extract_many(
                [h.url for h in to_fetch], concurrency=limits.concurrency
            )
            state.urls_fetched += len(extracted)
            usable = [c for c in extracted if c.usable]
            state.urls_successful += len(usable)
            logger.info("Extracted %d/%d URLs", len(usable), len(extracted))
            if not usable:
                return False

            # 6. Keyword filters on full content
            contents = [
                c for c in usable
                if passes_keyword_filters(
                    f"{c.title} {c.snippet} {c.full_content}",
                    params.required_keywords,
                    params.excluded_keywords,
                )
            ]
            if len(contents) != len(usable):
                logger.info("Keyword filters kept %d/%d contents", len(contents), len(usable))
            if not contents:
                return False

            # 7. Relevance
            content_by_key = {normalize_url(c.url): c for c in contents}
            items = [
                ContentToAnalyze(
                    url=c.url,
                    title=c.title or hit_by_key.get(key, SearchHit(url=c.url)).title,
                    snippet=c.snippet,
                    published_date=c.published_date,
                    metadata={"description": c.description, "author": c.author},
                )
                for key, c in content_by_key.items()
            ]
            state.urls_analyzed += len(items)
            scores = await self.retry.run(
                lambda: llm.score_relevance(
                    goal, items, threshold=limits.threshold, batch_size=settings.research_relevancy_batch_size
                ),
                description="relevance scoring",
            )

            # 8. Accept and materialize
            analyzed_at = utcnow()
            for score in scores:
                key = normalize_url(score.url)
                content = content_by_key.get(key)
                if content is None or key in accepted_keys:
                    continue
                entry = state.processed.get(key)
                if entry is not None:
                    entry.last_relevancy_score = score.score
                if not (score.score >= limits.threshold and score.is_relevant):
                    continue
                accepted_keys.add(key)
                state.results.append(
                    self._to_record(
                        user_id, project.id, search.name, content, score,
                        url_to_query.get(key, "unknown"), hit_by_key.get(key), analyzed_at,
                    )
                )
            logger.info(
                "%d relevant results this iteration (threshold %d)", len(accepted_keys), limits.threshold
            )
            return False
        finally:
            # Every issued query counts, including failed searches (0 found)
            for query in queries:
                found = urls_by_query.get(query, set())
                state.add_query_stats(
                    query,
                    found=len(responses[query].results) if query in responses else 0,
                    relevant=len(found & accepted_keys),
                )

    async def _prefilter(
        self, llm: LLMProvider, goal: str, candidates: list[SearchHit]
    ) -> list[SearchHit]:
        """Drop only candidates the provider explicitly rejects; fail open."""
        try:
            decisions = await llm.filter_candidates(
                [CandidateToFilter(url=h.url, title=h.title, description=h.description) for h in candidates],
                goal,
            )
        except Exception as e:
            logger.warning("Candidate pre-filter failed, keeping all %d: %s", len(candidates), e)
            return candidates
        if decisions is None:
            return candidates
        rejected = {normalize_url(d.url) for d in decisions if not d.keep}
        kept = [h for h in candidates if normalize_url(h.url) not in rejected]
        logger.info("Pre-filter kept %d/%d candidates", len(kept), len(candidates))
        return kept

    async def _compile_report(
        self, llm: LLMProvider, project: ResearchProject, ranked: list[SearchResultRecord]
    ) -> CompiledReport:
        title = project.title or "Research Report"
        if not ranked:
            return placeholder_report(title)
        results = [
            ResultForReport(
                url=r.url,
                title=r.title,
                snippet=r.snippet,
                score=r.relevancy_score,
                key_points=r.key_points or [p.strip() for p in r.relevancy_reason.split(".") if p.strip()][:3],
                published_date=r.published_date,
                author=r.author,
                image_url=r.image_url,
                image_alt=r.image_alt,
            )
            for r in ranked
        ]
        return await self.retry.run(
            lambda: llm.compile_report(
                project.description,
                results,
                tone="professional",
                max_length=settings.research_report_max_length,
            ),
            description="report compilation",
        )

    async def _record_delivery(
        self,
        user_id: str,
        project: ResearchProject,
        report: CompiledReport,
        ranked: list[SearchResultRecord],
        result_ids: list[str],
        state: RunState,
        started_at: datetime,
    ) -> str:
        """Save the delivery log, then attempt email delivery best-effort."""
        address = self._delivery_address(user_id, project)
        destination = project.results_destination
        stats = DeliveryStats(
            total_results=len(state.results),
            included_results=len(ranked),
            average_relevancy_score=report.average_score,
            search_queries_used=len(state.queries_executed),
            iterations_required=state.iterations,
            urls_fetched=state.urls_fetched,
            urls_successful=state.urls_successful,
        )
        log = DeliveryLog(
            user_id=user_id,
            project_id=project.id,
            report_title=report.title,
            report_summary=report.summary,
            report_markdown=report.markdown,
            average_score=report.average_score,
            result_count=report.result_count or len(ranked),
            stats=stats.model_dump(),
            search_result_ids=result_ids,
            destination=destination,
            research_started_at=started_at,
            research_completed_at=utcnow(),
        )
        log_id = self.store.save_delivery_log(log)

        if destination != "email" or not address or self.email_sender is None:
            return log_id

        try:
            sent = await self.email_sender(address, report, project, log_id)
        except Exception as e:
            logger.warning("Report delivery to %s failed: %s", address, e)
            self.store.update_delivery_status(log_id, "error", str(e))
            return log_id
        if sent:
            self.store.update_delivery_status(log_id, "success")
        else:
            logger.warning("Report delivery to %s was not sent", address)
            self.store.update_delivery_status(log_id, "error", "Email sender reported failure")
        return log_id

    # -- Helpers -----------------------------------------------------------

    def _delivery_address(self, user_id: str, project: ResearchProject) -> str | None:
        email = project.delivery.email
        if email and email.address:
            return email.address
        user = self.store.get_user(user_id)
        return user.email if user and user.email else None

    @staticmethod
    def _resolve_limits(project: ResearchProject, options: ResearchOptions) -> RunLimits:
        def pick(value, fallback):
            return fallback if value is None else value

        return RunLimits(
            max_iterations=pick(options.max_iterations, settings.research_max_iterations),
            min_results=pick(options.min_results, project.min_results),
            max_results=pick(options.max_results, project.max_results),
            threshold=pick(options.relevancy_threshold, project.relevancy_threshold),
            concurrency=pick(options.concurrent_extractions, settings.research_concurrent_extractions),
            queries_per_iteration=pick(options.queries_per_iteration, settings.research_queries_per_iteration),
            max_candidates=pick(
                options.max_candidates_per_iteration, settings.research_max_candidates_per_iteration
            ),
        )

    @staticmethod
    def _build_filters(project: ResearchProject) -> SearchFilters:
        params = project.search_params
        date_from = date_to = None
        if params.date_range_preference:
            start, end = calculate_date_range(project.frequency)
            date_from, date_to = start.date().isoformat(), end.date().isoformat()
        return SearchFilters(
            country=params.region,
            language=params.language,
            include_domains=params.priority_domains,
            exclude_domains=params.excluded_domains,
            date_from=date_from,
            date_to=date_to,
            count=settings.research_results_per_query,
        )

    @staticmethod
    def _to_record(
        user_id: str,
        project_id: str,
        engine_name: str,
        content: ExtractedContent,
        score,
        source_query: str,
        hit: SearchHit | None,
        analyzed_at: datetime,
    ) -> SearchResultRecord:
        return SearchResultRecord(
            user_id=user_id,
            project_id=project_id,
            url=content.url,
            normalized_url=normalize_url(content.url),
            source_query=source_query,
            search_engine=engine_name.lower(),
            snippet=content.snippet,
            full_content=content.full_content,
            relevancy_score=score.score,
            relevancy_reason=score.reasoning,
            key_points=list(score.key_points),
            title=content.title or (hit.title if hit else ""),
            description=content.description or (hit.description if hit else ""),
            author=content.author,
            published_date=content.published_date or (hit.published_date if hit else None),
            image_url=content.image_url or (hit.image_url if hit else None),
            image_alt=content.image_alt or (hit.image_alt if hit else None),
            content_type=content.content_type,
            word_count=content.word_count,
            fetch_status=content.fetch_status,
            fetched_at=content.fetched_at,
            analyzed_at=analyzed_at,
        )

    @staticmethod
    def _failed(project_id: str, error: str, started_at: datetime, clock: float) -> ResearchResult:
        return ResearchResult(
            success=False,
            project_id=project_id,
            error=error,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=int((time.monotonic() - clock) * 1000),
        )
