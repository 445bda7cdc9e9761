"""Shared utilities for the marketdigest package.

Small date and value helpers used by the event builders, the retention engine
and the price collector.
"""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime
from typing import Any


def is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def now_utc() -> datetime:
    return datetime.now(tz=UTC)


def utc_iso(dt: datetime) -> str:
    """Render *dt* as an ISO 8601 UTC string with millisecond precision."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_ymd(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%d")


# ---------------------------------------------------------------------------
# Date parsing
# ---------------------------------------------------------------------------

def parse_feed_date(s: str | None) -> datetime | None:
    """Parse an RSS/Atom/ISO date string to an aware UTC datetime.

    Tries RFC 822 (email.utils) first, then ISO 8601 fromisoformat.
    Naive values are taken as UTC. Returns None when nothing matches.
    """
    if not isinstance(s, str) or not s.strip():
        return None
    s = s.strip()

    # RFC 822 (common in RSS 2.0).
    try:
        dt = email.utils.parsedate_to_datetime(s)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)
    except (ValueError, TypeError, OverflowError, IndexError):
        pass

    # ISO 8601 (Atom, dc:date, persisted published_at/date fields).
    raw = s
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
