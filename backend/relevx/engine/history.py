"""In-memory view of a project's search history with keyed indexes."""

from __future__ import annotations

from datetime import datetime

from relevx.models.history import ProcessedUrl, QueryPerformance, QueryStats
from relevx.models.project import utcnow


def success_rate(relevant: int, found: int) -> float:
    if found <= 0:
        return 0.0
    return relevant / found * 100


class SearchHistory:
    """Processed URLs keyed by normalized URL, query stats keyed by query text.

    The set of normalized URLs only ever grows; merging re-indexes new entries.
    """

    def __init__(
        self,
        user_id: str,
        project_id: str,
        processed_urls: list[ProcessedUrl] | None = None,
        query_performance: list[QueryPerformance] | None = None,
    ) -> None:
        self.user_id = user_id
        self.project_id = project_id
        self._urls: dict[str, ProcessedUrl] = {}
        self._queries: dict[str, QueryPerformance] = {}
        for entry in processed_urls or []:
            self._urls[entry.normalized_url] = entry
        for perf in query_performance or []:
            self._queries[perf.query] = perf

    @property
    def processed_urls(self) -> list[ProcessedUrl]:
        return list(self._urls.values())

    @property
    def query_performance(self) -> list[QueryPerformance]:
        return list(self._queries.values())

    @property
    def normalized_urls(self) -> set[str]:
        return set(self._urls)

    def has_url(self, normalized_url: str) -> bool:
        return normalized_url in self._urls

    def get_url(self, normalized_url: str) -> ProcessedUrl | None:
        return self._urls.get(normalized_url)

    def get_query(self, query: str) -> QueryPerformance | None:
        return self._queries.get(query)

    def merge_urls(self, new_urls: list[ProcessedUrl]) -> None:
        for incoming in new_urls:
            existing = self._urls.get(incoming.normalized_url)
            if existing is None:
                self._urls[incoming.normalized_url] = incoming.model_copy()
                continue
            existing.times_found += 1
            existing.was_included = existing.was_included or incoming.was_included
            if incoming.last_relevancy_score is not None:
                existing.last_relevancy_score = incoming.last_relevancy_score

    def merge_query_stats(
        self, stats: dict[str, QueryStats], now: datetime | None = None
    ) -> None:
        now = now or utcnow()
        for query, delta in stats.items():
            perf = self._queries.get(query)
            if perf is None:
                perf = QueryPerformance(query=query, last_used_at=now)
                self._queries[query] = perf
            perf.times_used += 1
            perf.urls_found += delta.urls_found
            perf.relevant_urls_found += delta.relevant_urls_found
            perf.success_rate = success_rate(perf.relevant_urls_found, perf.urls_found)
            perf.last_used_at = now

    def top_queries(self, limit: int = 3) -> list[QueryPerformance]:
        """Best previous queries by success rate (ties keep insertion order)."""
        ranked = sorted(
            self._queries.values(),
            key=lambda p: p.success_rate,
            reverse=True,
        )
        return ranked[:limit]
