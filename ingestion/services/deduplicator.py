"""Cross-source deduplication and recency ordering of raw news items."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ingestion.models.domain import RawNewsItem, SourceType

SIMILARITY_THRESHOLD = 0.85

# Fixed total order: primary financial feeds above social feeds.
SOURCE_PRIORITY: Dict[SourceType, int] = {
    SourceType.ALPHA_VANTAGE: 3,
    SourceType.NEWS_API: 2,
    SourceType.REDDIT: 1,
}

# Tried in order; the first successful parse wins.
PUBLISHED_AT_FORMATS: Sequence[str] = (
    "%Y%m%dT%H%M%S",
    "%Y%m%dT%H%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
)

# strptime accepts single-digit fields; each format only matches its exact width
_FORMAT_WIDTHS: Dict[str, int] = {fmt: len(datetime(2000, 1, 1).strftime(fmt)) for fmt in PUBLISHED_AT_FORMATS}


def _normalize_title(title: str) -> str:
    return title.lower().strip()


def titles_similar(first: str, second: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """Identical normalized titles, or whitespace-token Jaccard similarity >= threshold."""
    a = _normalize_title(first)
    b = _normalize_title(second)
    if a == b:
        return True
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    union = tokens_a | tokens_b
    if not union:
        return False
    return len(tokens_a & tokens_b) / len(union) >= threshold


def priority_of(item: RawNewsItem) -> int:
    # The relevance score is 0..1, so flooring only matters for a perfect 1.0.
    relevance = math.floor(item.relevance_score) if item.relevance_score is not None else 0
    return SOURCE_PRIORITY.get(item.source_type, 0) + relevance


def deduplicate(items: Iterable[RawNewsItem]) -> List[RawNewsItem]:
    """Collapse items describing the same story into one.

    Single left-to-right pass. An item matches an already kept one by exact
    URL first, then by title similarity. On a match the item with the
    strictly higher priority is kept in the earlier item's position; equal
    priority keeps the first seen.
    """
    unique: List[RawNewsItem] = []
    url_index: Dict[str, int] = {}

    for item in items:
        match: Optional[int] = None
        if item.url is not None and item.url in url_index:
            match = url_index[item.url]
        else:
            for index, existing in enumerate(unique):
                if titles_similar(item.title, existing.title):
                    match = index
                    break

        if match is None:
            if item.url is not None:
                url_index[item.url] = len(unique)
            unique.append(item)
            continue

        existing = unique[match]
        if priority_of(item) > priority_of(existing):
            if existing.url is not None and url_index.get(existing.url) == match:
                del url_index[existing.url]
            unique[match] = item
            if item.url is not None:
                url_index[item.url] = match

    return unique


def parse_published_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    for fmt in PUBLISHED_AT_FORMATS:
        if len(text) != _FORMAT_WIDTHS[fmt]:
            continue
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def sort_by_recency(items: Iterable[RawNewsItem]) -> List[RawNewsItem]:
    """Newest first; unparseable timestamps sort last. Stable for ties."""

    def _key(item: RawNewsItem) -> datetime:
        return parse_published_at(item.published_at) or datetime.min

    return sorted(items, key=_key, reverse=True)
