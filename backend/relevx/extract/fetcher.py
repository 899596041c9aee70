"""HttpContentExtractor — fetch pages with httpx, pull the main text with trafilatura.

Metadata (title, description, author, image) comes from BeautifulSoup. When
trafilatura finds no main text, or too little of it, the visible body text is
used instead.

Per-URL failures come back as ExtractedContent with fetch_status
"error" / "timeout" / "skipped"; nothing is raised to the caller.
"""

from __future__ import annotations

import logging
import re

import httpx
import trafilatura
from bs4 import BeautifulSoup

from relevx.config import settings
from relevx.engine.filters import normalize_url
from relevx.providers.base import ContentExtractor, ExtractedContent

logger = logging.getLogger(__name__)

STRIP_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form", "svg", "iframe"]
HTML_TYPES = ("text/html", "application/xhtml+xml")
# Shorter main-text extractions are treated as low quality
MIN_MAIN_TEXT_CHARS = 500


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def _meta(soup: BeautifulSoup, *keys: str) -> str | None:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def _main_text(raw_html: str, soup: BeautifulSoup) -> tuple[str, str]:
    """(text, method): trafilatura first, visible body text as the fallback."""
    extracted = trafilatura.extract(raw_html, output_format="txt")
    if isinstance(extracted, str):
        text = _normalize_text(extracted)
        if len(text) >= MIN_MAIN_TEXT_CHARS:
            return text, "trafilatura"

    for tag in soup(STRIP_TAGS):
        tag.decompose()
    body = soup.find("article") or soup.find("main") or soup.body or soup
    return _normalize_text(body.get_text("\n")), "html"


def parse_html(
    url: str,
    raw_html: str,
    max_content_chars: int | None = None,
    snippet_chars: int | None = None,
) -> ExtractedContent:
    """Turn an HTML document into ExtractedContent (title, text, metadata)."""
    max_content_chars = max_content_chars or settings.extract_max_content_chars
    snippet_chars = snippet_chars or settings.extract_snippet_chars
    soup = BeautifulSoup(raw_html, "html.parser")

    title = _meta(soup, "og:title") or (soup.title.string if soup.title and soup.title.string else "")
    description = _meta(soup, "og:description", "description") or ""
    author = _meta(soup, "author", "article:author")
    published = _meta(soup, "article:published_time", "date", "pubdate")
    image_url = _meta(soup, "og:image")
    image_alt = _meta(soup, "og:image:alt")
    if image_url is None:
        img = soup.find("img", src=True)
        if img is not None:
            image_url = img["src"]
            image_alt = img.get("alt")

    text, method = _main_text(raw_html, soup)
    full_content = _truncate(text, max_content_chars)

    return ExtractedContent(
        url=url,
        normalized_url=normalize_url(url),
        title=_normalize_text(title),
        snippet=_truncate(text, snippet_chars),
        full_content=full_content,
        description=description,
        author=author,
        published_date=published,
        content_type="text/html",
        image_url=image_url,
        image_alt=image_alt,
        word_count=len(text.split()),
        extraction_method=method,
    )


class HttpContentExtractor(ContentExtractor):
    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout or settings.extract_timeout_seconds
        self.user_agent = user_agent or settings.extract_user_agent
        self._transport = transport

    async def extract(self, url: str) -> ExtractedContent:
        normalized = normalize_url(url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent, "Accept": "text/html,application/xhtml+xml"},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("Timed out fetching %s", url)
            return ExtractedContent(url=url, normalized_url=normalized, fetch_status="timeout", error=str(e))
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch %s: %s", url, e)
            return ExtractedContent(url=url, normalized_url=normalized, fetch_status="error", error=str(e))

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type and content_type not in HTML_TYPES:
            logger.info("Skipping %s (content-type %s)", url, content_type)
            return ExtractedContent(
                url=url,
                normalized_url=normalized,
                content_type=content_type,
                fetch_status="skipped",
                error=f"Unsupported content type: {content_type}",
            )

        return parse_html(url, response.text)
