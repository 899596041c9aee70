"""Brave Search API provider (httpx).

Domain include/exclude filters are expressed as site: operators in the query;
a date window is mapped onto Brave's coarse `freshness` buckets.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx

from relevx.config import settings
from relevx.errors import FatalProviderError, ProviderNotConfiguredError, SearchProviderError
from relevx.providers.base import SearchFilters, SearchHit, SearchProvider, SearchResponse

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_COUNT = 20


def build_query(query: str, filters: SearchFilters | None = None) -> str:
    """Append (site:a OR site:b) and -site:c operators to the query."""
    modified = query
    if filters and filters.include_domains:
        sites = " OR ".join(f"site:{d}" for d in filters.include_domains)
        modified = f"{modified} ({sites})"
    if filters and filters.exclude_domains:
        excluded = " ".join(f"-site:{d}" for d in filters.exclude_domains)
        modified = f"{modified} {excluded}"
    return modified.strip()


def freshness_for(date_from: str | None, today: date | None = None) -> str | None:
    """pd / pw / pm / py by the number of days back to `date_from`; None beyond a year."""
    if not date_from:
        return None
    try:
        start = date.fromisoformat(date_from[:10])
    except ValueError:
        logger.warning("Ignoring unparseable date_from %r", date_from)
        return None
    days = ((today or date.today()) - start).days
    if days <= 1:
        return "pd"
    if days <= 7:
        return "pw"
    if days <= 30:
        return "pm"
    if days <= 365:
        return "py"
    return None


def build_params(query: str, filters: SearchFilters | None = None, today: date | None = None) -> dict[str, Any]:
    filters = filters or SearchFilters()
    params: dict[str, Any] = {
        "q": build_query(query, filters),
        "count": min(filters.count or MAX_COUNT, MAX_COUNT),
    }
    if filters.offset:
        params["offset"] = filters.offset
    if filters.country:
        params["country"] = filters.country
    if filters.language:
        params["search_lang"] = filters.language
    if filters.safesearch:
        params["safesearch"] = filters.safesearch
    freshness = freshness_for(filters.date_from, today)
    if freshness:
        params["freshness"] = freshness
    return params


class BraveSearchProvider(SearchProvider):
    name = "brave"

    def __init__(
        self,
        api_key: str | None = None,
        min_request_interval: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            settings.search_min_request_interval if min_request_interval is None else min_request_interval
        )
        self.api_key = api_key or settings.brave_api_key
        if not self.api_key:
            raise ProviderNotConfiguredError("BRAVE_API_KEY is not configured")
        self.timeout = timeout or settings.search_timeout_seconds
        self._transport = transport

    async def search(self, query: str, filters: SearchFilters | None = None) -> SearchResponse:
        params = build_params(query, filters)
        await self._throttle()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip",
                    "X-Subscription-Token": self.api_key,
                },
            )

        if response.status_code in (401, 403):
            raise FatalProviderError(f"Brave Search rejected credentials ({response.status_code})")
        if response.status_code != 200:
            raise SearchProviderError(
                f"Brave Search API error ({response.status_code}): {response.text[:200]}"
            )

        raw_results = response.json().get("web", {}).get("results", []) or []
        hits = []
        for item in raw_results:
            if not item.get("url"):
                continue
            thumbnail = item.get("thumbnail") or {}
            hits.append(
                SearchHit(
                    url=item["url"],
                    title=item.get("title", "") or "",
                    description=item.get("description", "") or "",
                    published_date=item.get("page_age") or item.get("age"),
                    image_url=thumbnail.get("src"),
                    image_alt=thumbnail.get("alt"),
                    language=item.get("language"),
                )
            )
        logger.debug("Brave %r -> %d results", params["q"], len(hits))
        return SearchResponse(query=query, results=hits, total_count=len(hits))
