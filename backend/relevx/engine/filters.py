"""URL normalization, candidate dedup, and keyword filters."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

from relevx.providers.base import SearchHit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """Canonical form used for dedup: scheme://host/path.

    Host is lower-cased with a leading "www." removed; query, fragment and
    default ports are dropped; trailing slashes are stripped except for the
    root path. Input that does not parse as an absolute URL is lower-cased.
    Idempotent: normalize_url(normalize_url(u)) == normalize_url(u).
    """
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return url.lower()
    if not parts.scheme or not hostname:
        return url.lower()

    host = hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
        host = f"{host}:{port}"

    path = parts.path.rstrip("/") or "/"
    return f"{parts.scheme}://{host}{path}"


def dedupe_candidates(
    hits: Iterable[SearchHit], seen: set[str] | None = None
) -> list[SearchHit]:
    """Drop hits whose normalized URL is in `seen` or repeats within the batch.

    `seen` is not modified. Encounter order is kept.
    """
    skip = set(seen or ())
    unique: list[SearchHit] = []
    for hit in hits:
        key = normalize_url(hit.url)
        if key in skip:
            continue
        skip.add(key)
        unique.append(hit)
    return unique


def contains_excluded_keyword(text: str, excluded: Iterable[str]) -> bool:
    lowered = (text or "").lower()
    return any(k.lower() in lowered for k in excluded if k)


def passes_keyword_filters(
    text: str,
    required: Iterable[str] = (),
    excluded: Iterable[str] = (),
) -> bool:
    """Case-insensitive substring filters.

    Fails on any excluded keyword; with required keywords, at least one must occur.
    """
    if contains_excluded_keyword(text, excluded):
        return False
    required = [k for k in required if k]
    if not required:
        return True
    lowered = (text or "").lower()
    return any(k.lower() in lowered for k in required)
