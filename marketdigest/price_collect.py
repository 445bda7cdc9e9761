"""Market price/statistics collector.

Expands URL templates from ``data/sources/sources.json`` with date and API key
placeholders, probes each configured open-data endpoint once and records a
per-source fetch status. Until per-source value extraction is wired up the
species summary itself is rule-based sample data (week/month/year change plus
a memo line); no forecasting.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Literal, Mapping
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

import requests

from ._util import is_non_empty_str, now_utc, utc_iso
from .config import ConfigError
from .event_store import atomic_write_json
from .feed_fetch import DEFAULT_TIMEOUT_S, FetchError, fetch_response, response_text

logger = logging.getLogger(__name__)

PRICE_USER_AGENT = "data-bot/2.6"

PayloadKind = Literal["json", "xml", "text"]

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
_XML_RE = re.compile(r"^\s*(<\?xml|<!DOCTYPE|<\w+)", re.IGNORECASE)
_JSON_RE = re.compile(r"^\s*[\{\[]")
_WS_RE = re.compile(r"\s+")

ResponseFetchFn = Callable[[str], requests.Response]


@dataclass(frozen=True)
class ApiSecrets:
    data_go_kr_service_key: str = ""
    kamis_cert_key: str = ""
    kamis_cert_id: str = ""
    exim_authkey: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ApiSecrets":
        env = os.environ if environ is None else environ
        return cls(
            data_go_kr_service_key=env.get("DATA_GO_KR_SERVICE_KEY", ""),
            kamis_cert_key=env.get("KAMIS_CERT_KEY", ""),
            kamis_cert_id=env.get("KAMIS_CERT_ID", ""),
            exim_authkey=env.get("EXIM_AUTHKEY", ""),
        )


@dataclass(frozen=True)
class PriceSource:
    id: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    format: str = ""    # "json" | "xml" | "text"; empty means sniff the body


def load_price_sources(path: Path) -> list[PriceSource]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"price sources not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"price sources unreadable: {path}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("sources"), list):
        raise ConfigError(f"price sources missing 'sources' list: {path}")

    out: list[PriceSource] = []
    for s in data["sources"]:
        if not isinstance(s, dict) or not is_non_empty_str(s.get("id")):
            continue
        params = s.get("params") if isinstance(s.get("params"), dict) else {}
        out.append(
            PriceSource(
                id=str(s["id"]).strip(),
                url=str(s.get("url") or "").strip(),
                params={str(k): str(v) for k, v in params.items()},
                format=str(s.get("format") or "").strip().lower(),
            )
        )
    return out


# ---------------------------------------------------------------------------
# URL templating
# ---------------------------------------------------------------------------

def _yyyymmdd(d: datetime) -> str:
    return f"{d.year:04d}{d.month:02d}{d.day:02d}"


def template_context(now: datetime, secrets: ApiSecrets) -> dict[str, str]:
    return {
        "DATA_GO_KR_SERVICE_KEY": secrets.data_go_kr_service_key,
        "KAMIS_CERT_KEY": secrets.kamis_cert_key,
        "KAMIS_CERT_ID": secrets.kamis_cert_id,
        "EXIM_AUTHKEY": secrets.exim_authkey,
        "YYYYMMDD": _yyyymmdd(now),
        "END_YMD": _yyyymmdd(now),
        "START_YMD": _yyyymmdd(now - timedelta(days=7)),
    }


def expand_template(value: str, ctx: Mapping[str, str]) -> str:
    """Replace ``{{NAME}}`` placeholders; unknown names become empty."""
    return _PLACEHOLDER_RE.sub(lambda m: str(ctx.get(m.group(1), "")), str(value))


def build_url(base: str, params: Mapping[str, str], ctx: Mapping[str, str]) -> str:
    """Merge expanded params into *base*'s query. Empty values are skipped."""
    if not base:
        return ""
    u = urlsplit(base)
    query = dict(parse_qsl(u.query, keep_blank_values=True))
    for k, v in params.items():
        expanded = expand_template(v, ctx)
        if expanded:
            query[k] = expanded
    return urlunsplit((u.scheme, u.netloc, u.path, urlencode(query), u.fragment))


# ---------------------------------------------------------------------------
# Response inspection
# ---------------------------------------------------------------------------

def detect_format(text: str) -> PayloadKind:
    if _JSON_RE.match(text or ""):
        return "json"
    if _XML_RE.match(text or ""):
        return "xml"
    return "text"


def xml_get_all(text: str, tag: str) -> list[str]:
    """Stripped contents of every ``<tag>...</tag>``. Tag extraction only."""
    t = re.escape(tag)
    pattern = re.compile(rf"<{t}(?:\s[^>]*)?>(.*?)</{t}>", re.DOTALL | re.IGNORECASE)
    return [m.group(1).strip() for m in pattern.finditer(text or "")]


SECRET_PLACEHOLDERS: tuple[str, ...] = ("DATA_GO_KR_SERVICE_KEY", "KAMIS_CERT_KEY", "KAMIS_CERT_ID", "EXIM_AUTHKEY")
REDACTED = "REDACTED"


def redacted_context(ctx: Mapping[str, str]) -> dict[str, str]:
    """*ctx* with every non-empty API key replaced by ``REDACTED``."""
    return {k: (REDACTED if k in SECRET_PLACEHOLDERS and v else v) for k, v in ctx.items()}


def _scrub(text: str, ctx: Mapping[str, str]) -> str:
    for name in SECRET_PLACEHOLDERS:
        value = ctx.get(name)
        if value:
            text = text.replace(value, REDACTED).replace(quote_plus(value), REDACTED)
    return text


def probe_source(src: PriceSource, ctx: Mapping[str, str], *, fetch: ResponseFetchFn) -> dict[str, Any]:
    """Fetch *src* once and describe the response.

    API keys only reach the request itself; the recorded ``url``, ``error``
    and log lines carry the redacted form.
    """
    url = build_url(src.url, src.params, ctx)
    shown_url = build_url(src.url, src.params, redacted_context(ctx))
    try:
        resp = fetch(url)
        text = response_text(resp)
    except FetchError as e:
        error = _scrub(str(e).replace(url, shown_url), ctx)
        logger.warning("Price source %s failed: %s", src.id, error)
        return {"ok": False, "url": shown_url, "error": error}

    kind = src.format or detect_format(text)
    status: dict[str, Any] = {
        "ok": True,
        "kind": kind,
        "content_type": str(resp.headers.get("Content-Type") or ""),
        "url": shown_url,
        "preview": _scrub(_WS_RE.sub(" ", text[:60]), ctx),
    }
    if kind == "xml":
        msgs = xml_get_all(text, "resultMsg")
        if msgs:
            status["result_msg"] = _scrub(msgs[0], ctx)
    return status


# ---------------------------------------------------------------------------
# Summary rules
# ---------------------------------------------------------------------------

def pct_change(cur: float | None, base: float | None) -> float | None:
    if cur is None or base is None or base == 0:
        return None
    return (cur - base) / base * 100.0


def _signed_pct(v: float) -> str:
    return f"+{v:.1f}%" if v >= 0 else f"{v:.1f}%"


def memo_rule(wow: float | None, mom: float | None, yoy: float | None) -> str:
    parts: list[str] = []
    if wow is not None:
        if abs(wow) < 1:
            parts.append(f"전주 대비 보합({_signed_pct(wow)})")
        elif wow > 0:
            parts.append(f"전주 대비 상승({_signed_pct(wow)})")
        else:
            parts.append(f"전주 대비 하락({_signed_pct(wow)})")
    if mom is not None:
        if mom > 2:
            parts.append(f"전월 대비 강세({_signed_pct(mom)})")
        elif mom < -2:
            parts.append(f"전월 대비 약세({_signed_pct(mom)})")
    if yoy is not None:
        if yoy > 5:
            parts.append(f"전년 동월 대비 상회({_signed_pct(yoy)})")
        elif yoy < -5:
            parts.append(f"전년 동월 대비 하회({_signed_pct(yoy)})")
    return " · ".join(parts) or "데이터 축적 중"


def make_sample_series(base: float, weeks: int = 12) -> list[int]:
    out: list[int] = []
    v = float(base)
    for i in range(weeks):
        v = v * (1 + ((i % 3) - 1) * 0.003)
        out.append(int(math.floor(v + 0.5)))
    return out


_SAMPLE_ITEMS: tuple[tuple[str, str, str, int, int], ...] = (
    # species, metric, unit, current, series base
    ("돈육", "지육경락가", "원/kg", 5100, 5050),
    ("우육", "한우지육경락가", "원/kg", 17400, 17600),
    ("계란", "특란산지가", "원/개", 180, 185),
    ("계육", "닭도체가격", "원/kg", 2900, 2850),
)


def build_sample_summary(now: datetime) -> dict[str, Any]:
    items: list[dict[str, Any]] = []
    for species, metric, unit, current, base in _SAMPLE_ITEMS:
        series = make_sample_series(base)
        wow = pct_change(current, series[-2] if len(series) >= 2 else None)
        mom = pct_change(current, series[-5] if len(series) >= 5 else None)
        yoy = None
        items.append(
            {
                "species": species,
                "metric": metric,
                "unit": unit,
                "current": current,
                "series_12w": series,
                "wow": wow,
                "mom": mom,
                "yoy": yoy,
                "memo": memo_rule(wow, mom, yoy),
            }
        )
    return {
        "updated_at": utc_iso(now),
        "basis": {"week": "전주 대비", "month": "전월 대비", "yoy": "전년 동월 대비"},
        "mode": "sample",
        "items": items,
    }


def run_price_update(
    sources_path: Path,
    out_path: Path,
    *,
    secrets: ApiSecrets,
    now: datetime | None = None,
    fetch: ResponseFetchFn | None = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> dict[str, Any]:
    """Probe configured price sources and write the species summary.

    Raises ConfigError when the sources file is unusable.
    """
    now = now or now_utc()
    sources = load_price_sources(sources_path)
    if fetch is None:
        def fetch(url: str) -> requests.Response:
            return fetch_response(url, timeout=timeout_s, user_agent=PRICE_USER_AGENT)

    summary = build_sample_summary(now)
    configured = [s for s in sources if s.url]
    if configured:
        ctx = template_context(now, secrets)
        summary["mode"] = "sample_with_fetch_status"
        summary["fetch_status"] = {s.id: probe_source(s, ctx, fetch=fetch) for s in configured}

    atomic_write_json(out_path, summary)
    fetch_status = summary.get("fetch_status", {})
    return {
        "ok": True,
        "mode": summary["mode"],
        "out": str(out_path),
        "sources_total": len(configured),
        "sources_ok": sum(1 for st in fetch_status.values() if st.get("ok")),
    }
