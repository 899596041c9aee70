"""Tavily search provider (tavily-python AsyncTavilyClient)."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from tavily import AsyncTavilyClient

from relevx.config import settings
from relevx.errors import ProviderNotConfiguredError
from relevx.providers.base import SearchFilters, SearchHit, SearchProvider, SearchResponse
from relevx.providers.brave import freshness_for

logger = logging.getLogger(__name__)

TIME_RANGE_MAP = {
    "pd": "day",
    "pw": "week",
    "pm": "month",
    "py": "year",
}


def build_kwargs(query: str, filters: SearchFilters | None = None, today: date | None = None) -> dict[str, Any]:
    filters = filters or SearchFilters()
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": "basic",
        "max_results": filters.count or 5,
        "topic": "general",
    }
    bucket = freshness_for(filters.date_from, today)
    if bucket:
        kwargs["time_range"] = TIME_RANGE_MAP[bucket]
    if filters.include_domains:
        kwargs["include_domains"] = filters.include_domains
    if filters.exclude_domains:
        kwargs["exclude_domains"] = filters.exclude_domains
    return kwargs


class TavilySearchProvider(SearchProvider):
    """Country and language filters are not supported by Tavily and are ignored."""

    name = "tavily"

    def __init__(
        self,
        api_key: str | None = None,
        min_request_interval: float | None = None,
        client: AsyncTavilyClient | None = None,
    ) -> None:
        super().__init__(
            settings.search_min_request_interval if min_request_interval is None else min_request_interval
        )
        if client is None:
            api_key = api_key or settings.tavily_api_key
            if not api_key:
                raise ProviderNotConfiguredError("TAVILY_API_KEY is not configured")
            client = AsyncTavilyClient(api_key=api_key)
        self.client = client

    async def search(self, query: str, filters: SearchFilters | None = None) -> SearchResponse:
        await self._throttle()
        response = await self.client.search(**build_kwargs(query, filters))
        hits = [
            SearchHit(
                url=r["url"],
                title=r.get("title", "") or "",
                description=r.get("content", "") or "",
                published_date=r.get("published_date"),
            )
            for r in response.get("results", [])
            if r.get("url")
        ]
        return SearchResponse(query=query, results=hits, total_count=len(hits))
