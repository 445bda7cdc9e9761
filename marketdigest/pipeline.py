"""Event pipeline: fetch -> parse -> classify -> id -> merge/dedupe/retain -> write.

Each configured source is handled independently and produces a
``SourceOutcome`` value; a failing source never aborts the run. The merge
step runs once per category after every source has finished.
"""

from __future__ import annotations

import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from itertools import islice
from typing import Any, Callable

from ._util import now_utc, utc_iso
from .classify import DEFAULT_KEYWORDS, KeywordTables
from .config import EventSourcesConfig, FeedSource, Rules, RunConfig, load_event_sources, load_keyword_tables
from .event_ids import Category
from .event_store import atomic_write_json, build_output_doc, load_prior_items
from .events import (
    NEWS_DISCLAIMER,
    build_news_event,
    build_official_event,
    sanitize_news_event,
    sanitize_official_event,
)
from .feed_fetch import FetchError, fetch_text
from .feed_parse import iter_feed_items
from .retention import merge_events

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], str]


@dataclass
class SourceStatus:
    id: str
    name: str
    url: str
    ok: bool = False
    count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "ok": self.ok,
            "count": self.count,
            "error": self.error,
        }


@dataclass(frozen=True)
class SourceOutcome:
    category: Category
    status: SourceStatus
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class RunSummary:
    generated_at: str
    official_count: int
    news_count: int
    official_sources: list[dict[str, Any]]
    news_sources: list[dict[str, Any]]

    @property
    def sources_ok(self) -> int:
        return sum(1 for s in self.official_sources + self.news_sources if s.get("ok"))

    @property
    def sources_failed(self) -> int:
        return len(self.official_sources) + len(self.news_sources) - self.sources_ok

    def to_dict(self) -> dict[str, Any]:
        errors = [
            {"source": s["id"], "error": s.get("error") or "unknown"}
            for s in self.official_sources + self.news_sources
            if not s.get("ok")
        ]
        out: dict[str, Any] = {
            "ok": True,
            "generated_at": self.generated_at,
            "official": self.official_count,
            "news": self.news_count,
            "sources": {"ok": self.sources_ok, "failed": self.sources_failed},
        }
        if errors:
            out["errors"] = errors
        return out


def collect_source(
    feed: FeedSource,
    category: Category,
    *,
    fetch: FetchFn,
    rules: Rules,
    now: datetime,
    tables: KeywordTables = DEFAULT_KEYWORDS,
) -> SourceOutcome:
    """Fetch, parse and classify one source. Never raises."""
    status = SourceStatus(id=feed.id, name=feed.name, url=feed.url)
    try:
        text = fetch(feed.url)
        items = list(islice(iter_feed_items(text), max(0, int(rules.max_items_per_feed))))
        if category == "OFFICIAL":
            events = [build_official_event(it, feed, now=now, tables=tables) for it in items]
        else:
            events = [
                build_news_event(it, feed, now=now, default_severity=rules.default_news_severity, tables=tables)
                for it in items
            ]
    except FetchError as e:
        status.error = str(e)
        logger.warning("Source %s failed: %s", feed.id, e)
        return SourceOutcome(category=category, status=status)
    except Exception as e:
        status.error = str(e) or type(e).__name__
        logger.warning("Source %s failed unexpectedly", feed.id, exc_info=True)
        return SourceOutcome(category=category, status=status)

    status.ok = True
    status.count = len(items)
    if not items:
        logger.info("Source %s: no RSS/Atom items matched", feed.id)
    else:
        logger.info("Source %s: %d item(s)", feed.id, len(items))
    return SourceOutcome(category=category, status=status, events=events)


def collect_all(
    cfg: EventSourcesConfig,
    *,
    fetch: FetchFn,
    now: datetime,
    tables: KeywordTables = DEFAULT_KEYWORDS,
    max_workers: int = 1,
) -> list[SourceOutcome]:
    """Run every configured source; outcomes come back in config order."""
    jobs: list[tuple[FeedSource, Category]] = [(f, "OFFICIAL") for f in cfg.official]
    jobs += [(f, "NEWS") for f in cfg.news]

    def run(job: tuple[FeedSource, Category]) -> SourceOutcome:
        feed, category = job
        return collect_source(feed, category, fetch=fetch, rules=cfg.rules, now=now, tables=tables)

    workers = max(1, int(max_workers))
    if workers == 1 or len(jobs) <= 1:
        return [run(j) for j in jobs]
    with ThreadPoolExecutor(max_workers=min(workers, len(jobs))) as pool:
        return list(pool.map(run, jobs))


def run_event_pipeline(
    run_cfg: RunConfig,
    *,
    now: datetime | None = None,
    fetch: FetchFn | None = None,
) -> RunSummary:
    """One batch run. Raises ConfigError on bad config and OSError on write failure."""
    now = now or now_utc()
    cfg = load_event_sources(run_cfg.sources_path)
    tables = load_keyword_tables(run_cfg.keywords_path)
    if fetch is None:
        fetch = functools.partial(fetch_text, timeout=run_cfg.timeout_s, user_agent=run_cfg.user_agent)

    prior_official = [sanitize_official_event(ev) for ev in load_prior_items(run_cfg.official_path)]
    prior_news = [sanitize_news_event(ev) for ev in load_prior_items(run_cfg.news_path)]

    outcomes = collect_all(cfg, fetch=fetch, now=now, tables=tables, max_workers=run_cfg.max_workers)

    fresh: dict[str, list[dict[str, Any]]] = {"OFFICIAL": [], "NEWS": []}
    statuses: dict[str, list[dict[str, Any]]] = {"OFFICIAL": [], "NEWS": []}
    for o in outcomes:
        fresh[o.category].extend(o.events)
        statuses[o.category].append(o.status.to_dict())

    days_keep = cfg.rules.days_keep
    official = merge_events(prior_official, fresh["OFFICIAL"], days_keep=days_keep, now=now)
    news = merge_events(prior_news, fresh["NEWS"], days_keep=days_keep, now=now)

    generated_at = utc_iso(now)
    atomic_write_json(
        run_cfg.official_path,
        build_output_doc(official, statuses["OFFICIAL"], generated_at=generated_at),
    )
    atomic_write_json(
        run_cfg.news_path,
        build_output_doc(news, statuses["NEWS"], generated_at=generated_at, disclaimer=NEWS_DISCLAIMER),
    )
    logger.info("Wrote %d official and %d news event(s)", len(official), len(news))

    return RunSummary(
        generated_at=generated_at,
        official_count=len(official),
        news_count=len(news),
        official_sources=statuses["OFFICIAL"],
        news_sources=statuses["NEWS"],
    )
