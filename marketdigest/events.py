"""Normalized event records.

Events are plain JSON-ready dicts so that prior output files round-trip
without a schema migration. Official events carry ``template_id`` as their
only classification; news events carry title and link only, never body text.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ._util import parse_feed_date, to_ymd, utc_iso
from .classify import DEFAULT_KEYWORDS, KeywordTables, Severity, classify_title
from .config import FeedSource
from .event_ids import make_event_id
from .feed_parse import FeedItem

OFFICIAL_REGION = "KR"

# Never persisted on news events (title + link policy).
NEWS_FORBIDDEN_FIELDS: frozenset[str] = frozenset({"body", "summary", "excerpt", "description", "content"})
# Free-text classification older official records may carry.
OFFICIAL_FORBIDDEN_FIELDS: frozenset[str] = frozenset({"facts"})

NEWS_DISCLAIMER = "민간 뉴스는 제목/링크만 제공합니다. 본문 요약·발췌는 하지 않습니다."


def _dates(published_raw: str, now: datetime) -> tuple[str, str]:
    """(date, published_at) for an item; date falls back to *now*."""
    dt = parse_feed_date(published_raw)
    if dt is None:
        return to_ymd(now), ""
    return to_ymd(dt), utc_iso(dt)


def build_official_event(
    item: FeedItem,
    feed: FeedSource,
    *,
    now: datetime,
    tables: KeywordTables = DEFAULT_KEYWORDS,
) -> dict[str, Any]:
    c = classify_title(item.title, default_severity=feed.severity_default, tables=tables)
    date, published_at = _dates(item.published_raw, now)
    return {
        "event_id": make_event_id("OFFICIAL", item.link),
        "date": date,
        "category": "OFFICIAL",
        "subcategory": feed.category,
        "severity": c.severity,
        "species": c.species,
        "region": OFFICIAL_REGION,
        "template_id": c.template_id,
        "title": item.title,
        "source_title": feed.name,
        "source_url": item.link,
        "published_at": published_at,
    }


def build_news_event(
    item: FeedItem,
    feed: FeedSource,
    *,
    now: datetime,
    default_severity: Severity = "MID",
    tables: KeywordTables = DEFAULT_KEYWORDS,
) -> dict[str, Any]:
    c = classify_title(item.title, default_severity=default_severity, tables=tables)
    date, published_at = _dates(item.published_raw, now)
    species = list(feed.species_tags) if feed.species_tags else c.species
    return {
        "event_id": make_event_id("NEWS", item.link),
        "date": date,
        "category": "NEWS",
        "severity": c.severity,
        "species": species,
        "tags": list(feed.tags),
        "title": item.title,
        "publisher": feed.name,
        "url": item.link,
        "published_at": published_at,
    }


def sanitize_news_event(ev: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in ev.items() if k not in NEWS_FORBIDDEN_FIELDS}


def sanitize_official_event(ev: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in ev.items() if k not in OFFICIAL_FORBIDDEN_FIELDS}
