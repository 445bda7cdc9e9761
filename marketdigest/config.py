from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from .classify import DEFAULT_KEYWORDS, KeywordTables, Severity, keyword_tables_from_dict, normalise_severity
from .feed_fetch import DEFAULT_TIMEOUT_S, DEFAULT_USER_AGENT

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "sources_events_v1.schema.json"


class ConfigError(RuntimeError):
    """Source config is missing, unreadable or invalid. Aborts the run."""


@dataclass(frozen=True)
class FeedSource:
    id: str
    name: str
    url: str
    category: str = ""                       # official only, copied to subcategory
    severity_default: Severity = "MID"       # official only
    species_tags: tuple[str, ...] = ()       # news only, overrides keyword species
    tags: tuple[str, ...] = ()               # news only


@dataclass(frozen=True)
class Rules:
    max_items_per_feed: int = 30
    days_keep: int = 45
    default_news_severity: Severity = "MID"


@dataclass(frozen=True)
class EventSourcesConfig:
    rules: Rules
    official: list[FeedSource] = field(default_factory=list)
    news: list[FeedSource] = field(default_factory=list)


@dataclass(frozen=True)
class RunConfig:
    """Everything one pipeline run needs, passed explicitly to the entry point."""

    sources_path: Path
    out_dir: Path
    official_filename: str = "events_official.json"
    news_filename: str = "events_news.json"
    timeout_s: float = DEFAULT_TIMEOUT_S
    user_agent: str = DEFAULT_USER_AGENT
    max_workers: int = 1
    keywords_path: Path | None = None

    @classmethod
    def for_home(cls, home: Path, **overrides: Any) -> "RunConfig":
        home = Path(home)
        kwargs: dict[str, Any] = {
            "sources_path": home / "data" / "sources_events.json",
            "out_dir": home / "data" / "events",
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)

    @property
    def official_path(self) -> Path:
        return self.out_dir / self.official_filename

    @property
    def news_path(self) -> Path:
        return self.out_dir / self.news_filename


def _load_schema() -> dict[str, Any]:
    return json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))


def _str_tuple(v: Any) -> tuple[str, ...]:
    if not isinstance(v, list):
        return ()
    # First occurrence wins; duplicates are dropped.
    return tuple(dict.fromkeys(str(x) for x in v if isinstance(x, str) and x.strip()))


def _feed_from_dict(d: dict[str, Any]) -> FeedSource:
    fid = str(d["id"]).strip()
    return FeedSource(
        id=fid,
        name=str(d.get("name") or fid),
        url=str(d["url"]).strip(),
        category=str(d.get("category") or ""),
        severity_default=normalise_severity(d.get("severity_default")) or "MID",
        species_tags=_str_tuple(d.get("species_tags")),
        tags=_str_tuple(d.get("tags")),
    )


def parse_event_sources(data: Any) -> EventSourcesConfig:
    """Validate a decoded config document and build the typed config."""
    if not isinstance(data, dict):
        raise ConfigError("sources config must be a mapping")
    try:
        jsonschema.validate(instance=data, schema=_load_schema())
    except jsonschema.ValidationError as e:
        path = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"invalid sources config at {path}: {e.message}") from e

    r = data.get("rules") or {}
    rules = Rules(
        max_items_per_feed=int(r.get("max_items_per_feed", 30)),
        days_keep=int(r.get("days_keep", 45)),
        default_news_severity=normalise_severity(r.get("default_news_severity")) or "MID",
    )
    official = [_feed_from_dict(f) for f in data.get("official_rss") or []]
    news = [_feed_from_dict(f) for f in data.get("news_rss") or []]
    return EventSourcesConfig(rules=rules, official=official, news=news)


def load_event_sources(path: Path) -> EventSourcesConfig:
    """Load the event sources config (`.json` as JSON, anything else as YAML)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"sources config not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"sources config unreadable: {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"sources config is not valid JSON: {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"sources config is not valid JSON/YAML: {path}: {e}") from e
    return parse_event_sources(data)


def load_keyword_tables(path: Path | None) -> KeywordTables:
    """Load classifier keyword tables from YAML/JSON; None gives the defaults."""
    if path is None:
        return DEFAULT_KEYWORDS
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"keyword tables not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"keyword tables unreadable: {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"keyword tables must be a mapping: {path}")
    try:
        return keyword_tables_from_dict(data)
    except ValueError as e:
        raise ConfigError(f"invalid keyword tables in {path}: {e}") from e
