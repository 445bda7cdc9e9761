from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from ._util import is_non_empty_str, now_utc, parse_feed_date

logger = logging.getLogger(__name__)

DEFAULT_DAYS_KEEP = 45


def effective_timestamp(ev: dict[str, Any]) -> float | None:
    """Epoch seconds of ``published_at``, else ``date``; None when unparsable."""
    raw = ev.get("published_at") or ev.get("date")
    dt = parse_feed_date(raw if isinstance(raw, str) else None)
    if dt is None:
        return None
    return dt.timestamp()


def merge_events(
    existing: Iterable[dict[str, Any]],
    fresh: Iterable[dict[str, Any]],
    *,
    days_keep: int = DEFAULT_DAYS_KEEP,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Union prior and fresh events, dedupe by event_id, apply retention, sort.

    - Prior events are inserted first, then fresh ones; the later insertion for
      an event_id replaces the earlier one.
    - Events whose effective timestamp is older than ``now - days_keep`` are
      dropped. Events with no parsable timestamp are kept.
    - The result is sorted newest first (stable); unparsable timestamps sort
      as 0, i.e. last.
    """
    now = now or now_utc()
    by_id: dict[str, dict[str, Any]] = {}
    for ev in list(existing) + list(fresh):
        if not isinstance(ev, dict) or not is_non_empty_str(ev.get("event_id")):
            logger.debug("Skipping event without event_id: %r", ev)
            continue
        by_id[ev["event_id"]] = ev

    # Epoch arithmetic: a very long window must not overflow datetime.
    cutoff = now.timestamp() - int(days_keep) * 86400
    kept: list[tuple[float, dict[str, Any]]] = []
    dropped = 0
    for ev in by_id.values():
        ts = effective_timestamp(ev)
        if ts is not None and ts < cutoff:
            dropped += 1
            continue
        kept.append((ts or 0.0, ev))

    if dropped:
        logger.info("Retention dropped %d event(s) older than %d days", dropped, int(days_keep))

    kept.sort(key=lambda pair: pair[0], reverse=True)
    return [ev for _, ev in kept]
