#!/usr/bin/env python3
"""Refresh the official and news event files from the configured RSS/Atom feeds.

Meant to be triggered by an external scheduler: load sources → fetch every
feed → classify → merge with prior output → retention → write → print JSON.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

MARKETDIGEST_HOME = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(MARKETDIGEST_HOME))

from marketdigest.config import ConfigError, RunConfig  # noqa: E402
from marketdigest.pipeline import run_event_pipeline  # noqa: E402

logger = logging.getLogger(__name__)


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Update official/news livestock event files from RSS/Atom feeds.")
    parser.add_argument("--home", default=str(MARKETDIGEST_HOME), help="Base directory holding data/ (default: repo root).")
    parser.add_argument("--sources", default=None, help="Event sources config (default: <home>/data/sources_events.json).")
    parser.add_argument("--out-dir", default=None, help="Output directory (default: <home>/data/events).")
    parser.add_argument("--keywords", default=None, help="Optional YAML/JSON keyword tables for the classifier.")
    parser.add_argument("--workers", type=int, default=1, help="Sources fetched in parallel (default: 1).")
    parser.add_argument("--timeout", type=float, default=20.0, help="Per-feed fetch timeout in seconds (default: 20).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    run_cfg = RunConfig.for_home(
        Path(args.home).expanduser(),
        sources_path=Path(args.sources).expanduser() if args.sources else None,
        out_dir=Path(args.out_dir).expanduser() if args.out_dir else None,
        keywords_path=Path(args.keywords).expanduser() if args.keywords else None,
        max_workers=max(1, int(args.workers)),
        timeout_s=float(args.timeout),
    )

    try:
        summary = run_event_pipeline(run_cfg)
    except ConfigError as e:
        logger.error("%s", e)
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, separators=(",", ":")))
        return 2

    print(json.dumps(summary.to_dict(), ensure_ascii=False, separators=(",", ":")))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
