from __future__ import annotations

from datetime import datetime

from ingestion.models.domain import RawNewsItem, SourceType
from ingestion.services.deduplicator import (
    deduplicate,
    parse_published_at,
    priority_of,
    sort_by_recency,
    titles_similar,
)


def _item(
    title: str,
    *,
    url: str | None = None,
    source_type: SourceType = SourceType.NEWS_API,
    relevance: float | None = None,
    published_at: str = "",
) -> RawNewsItem:
    return RawNewsItem(
        title=title,
        url=url,
        source_type=source_type,
        relevance_score=relevance,
        published_at=published_at,
    )


def test_same_url_keeps_primary_source():
    primary = _item("Apple beats estimates", url="a", source_type=SourceType.ALPHA_VANTAGE, relevance=0.9)
    secondary = _item("Apple tops forecasts", url="a", source_type=SourceType.NEWS_API, relevance=0.9)

    assert deduplicate([primary, secondary]) == [primary]
    assert deduplicate([secondary, primary]) == [primary]


def test_equal_priority_keeps_first_seen():
    first = _item("Tesla recalls vehicles", url="u1", source_type=SourceType.NEWS_API, relevance=0.2)
    second = _item("Tesla recall widens", url="u1", source_type=SourceType.NEWS_API, relevance=0.8)

    assert deduplicate([first, second]) == [first]


def test_floor_of_perfect_relevance_adds_one_rank():
    perfect_secondary = _item("x", url="u", source_type=SourceType.NEWS_API, relevance=1.0)
    primary = _item("y", url="u", source_type=SourceType.ALPHA_VANTAGE, relevance=0.5)

    assert priority_of(perfect_secondary) == priority_of(primary) == 3
    assert deduplicate([perfect_secondary, primary]) == [perfect_secondary]


def test_similar_titles_collapse_without_url_collision():
    a = _item("apple shares rise after strong iphone sales report", url="https://a", source_type=SourceType.REDDIT)
    b = _item(
        "Apple shares rise after strong iPhone sales report today",
        url="https://b",
        source_type=SourceType.ALPHA_VANTAGE,
    )
    unrelated = _item("Microsoft announces new cloud region", url="https://c")

    result = deduplicate([a, unrelated, b])

    assert result == [b, unrelated]


def test_replacement_keeps_position_and_reindexes_url():
    low = _item("Nvidia earnings preview", url="https://low", source_type=SourceType.REDDIT)
    other = _item("Fed holds rates steady", url="https://other")
    high = _item("nvidia earnings preview", url="https://high", source_type=SourceType.ALPHA_VANTAGE)
    again = _item("Completely different title", url="https://high", source_type=SourceType.NEWS_API)

    result = deduplicate([low, other, high, again])

    assert result == [high, other]


def test_titles_similar_edge_cases():
    assert titles_similar("  Apple Rises ", "apple rises")
    assert not titles_similar("apple rises", "apple falls")
    assert titles_similar("a b c d e f g", "a b c d e f g h", threshold=0.85) is True
    assert titles_similar("a b c d e", "a b c d e f", threshold=0.85) is False


def test_output_preserves_insertion_order():
    items = [_item(f"headline number {i} unique words {i * 7}", url=f"u{i}") for i in range(5)]
    assert deduplicate(items) == items


def test_parse_published_at_tries_formats_in_order():
    assert parse_published_at("20250102T153045") == datetime(2025, 1, 2, 15, 30, 45)
    assert parse_published_at("20250102T1530") == datetime(2025, 1, 2, 15, 30)
    assert parse_published_at("2025-01-02T15:30:45") == datetime(2025, 1, 2, 15, 30, 45)
    assert parse_published_at("2025-01-02T15:30:45Z") == datetime(2025, 1, 2, 15, 30, 45)
    assert parse_published_at("yesterday") is None
    assert parse_published_at("") is None
    assert parse_published_at(None) is None


def test_sort_by_recency_newest_first_and_unparseable_last():
    old = _item("old", published_at="20240101T000000")
    new = _item("new", published_at="2025-03-01T10:00:00Z")
    mid = _item("mid", published_at="20250101T1200")
    broken = _item("broken", published_at="not a date")
    tie_a = _item("tie a", published_at="20240101T000000")

    result = sort_by_recency([broken, old, new, mid, tie_a])

    assert [i.title for i in result] == ["new", "mid", "old", "tie a", "broken"]
