"""Process-level composition: default providers and the public entry points.

The orchestrator itself takes everything by injection; this module holds the
one process-wide provider slot used by the scheduler and the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from relevx.config import settings
from relevx.db.database import engine as db_engine
from relevx.db.store import ResearchStore
from relevx.email.sender import send_report_email
from relevx.engine.orchestrator import ResearchOrchestrator
from relevx.errors import ConfigurationError, ProjectNotFoundError, ProviderNotConfiguredError
from relevx.extract.fetcher import HttpContentExtractor
from relevx.models.project import utcnow
from relevx.models.research import ResearchOptions, ResearchResult
from relevx.providers.base import ContentExtractor, LLMProvider, SearchProvider
from relevx.scheduling import calculate_next_run_at, validate_delivery_time

logger = logging.getLogger(__name__)


@dataclass
class DefaultProviders:
    llm: LLMProvider
    search: SearchProvider
    extractor: ContentExtractor


_defaults: DefaultProviders | None = None


def set_default_providers(
    llm: LLMProvider,
    search: SearchProvider,
    extractor: ContentExtractor | None = None,
) -> None:
    """Register the providers used when a call does not pass its own."""
    global _defaults
    _defaults = DefaultProviders(llm=llm, search=search, extractor=extractor or HttpContentExtractor())


def get_default_providers() -> DefaultProviders:
    if _defaults is None:
        raise ProviderNotConfiguredError(
            "Default providers not set. Call set_default_providers() or provide providers in options."
        )
    return _defaults


def clear_default_providers() -> None:
    global _defaults
    _defaults = None


def build_default_providers() -> DefaultProviders:
    """Construct providers from settings (llm_provider / search_provider)."""
    from relevx.llm.layer import LLMLayer
    from relevx.providers.claude import ClaudeProvider
    from relevx.providers.hybrid import HybridProvider

    layer = LLMLayer()
    if settings.llm_provider == "claude":
        llm: LLMProvider = ClaudeProvider(layer)
    elif settings.llm_provider == "hybrid":
        # Cheap tier for queries and analysis, stronger tier for the report
        fast = ClaudeProvider(layer, query_tier="haiku", analysis_tier="haiku", report_tier="haiku")
        strong = ClaudeProvider(layer, query_tier="sonnet", analysis_tier="sonnet", report_tier="sonnet")
        llm = HybridProvider(query_provider=fast, analysis_provider=fast, report_provider=strong)
    else:
        raise ConfigurationError(f"Unsupported LLM_PROVIDER: {settings.llm_provider}")

    if settings.search_provider == "brave":
        from relevx.providers.brave import BraveSearchProvider

        search: SearchProvider = BraveSearchProvider()
    elif settings.search_provider == "tavily":
        from relevx.providers.tavily import TavilySearchProvider

        search = TavilySearchProvider()
    else:
        raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")

    return DefaultProviders(llm=llm, search=search, extractor=HttpContentExtractor())


def _build_orchestrator(options: ResearchOptions, store: ResearchStore | None) -> ResearchOrchestrator:
    if options.llm_provider is not None and options.search_provider is not None:
        llm, search, extractor = options.llm_provider, options.search_provider, options.extractor
    else:
        defaults = get_default_providers()
        llm = options.llm_provider or defaults.llm
        search = options.search_provider or defaults.search
        extractor = options.extractor or defaults.extractor
    return ResearchOrchestrator(
        store or ResearchStore(db_engine),
        llm_provider=llm,
        search_provider=search,
        extractor=extractor,
        email_sender=send_report_email,
    )


async def execute_research_for_project(
    user_id: str,
    project_id: str,
    options: ResearchOptions | None = None,
    store: ResearchStore | None = None,
) -> ResearchResult:
    """Run research for one project with the default (or overridden) providers."""
    options = options or ResearchOptions()
    orchestrator = _build_orchestrator(options, store)
    return await orchestrator.run(user_id, project_id, options)


async def execute_research_batch(
    projects: list[tuple[str, str]],
    options: ResearchOptions | None = None,
    store: ResearchStore | None = None,
) -> list[ResearchResult]:
    """Run projects one after another; a failing project never stops the batch."""
    results: list[ResearchResult] = []
    for user_id, project_id in projects:
        logger.info("Executing research for project %s", project_id)
        try:
            result = await execute_research_for_project(user_id, project_id, options, store)
        except Exception as e:
            logger.error("Failed to execute research for project %s: %s", project_id, e)
            now = utcnow()
            result = ResearchResult(
                success=False,
                project_id=project_id,
                error=str(e),
                started_at=now,
                completed_at=now,
            )
        results.append(result)
    return results


def activate_project(store: ResearchStore, user_id: str, project_id: str):
    """Move a project to `active` and schedule its first run."""
    project = store.get_project(user_id, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    if not validate_delivery_time(project.delivery_time):
        raise ConfigurationError(
            f"Invalid delivery time {project.delivery_time!r}: use HH:MM in 15-minute increments"
        )
    next_run_at = calculate_next_run_at(project.frequency, project.delivery_time, project.timezone)
    logger.info("Activating project %s, next run at %s", project_id, next_run_at.isoformat())
    return store.update_project(
        user_id, project_id, status="active", next_run_at=next_run_at, last_error=None
    )
