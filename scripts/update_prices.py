#!/usr/bin/env python3
"""Probe the configured price/statistics APIs and write species_summary.json.

API keys come from the environment (DATA_GO_KR_SERVICE_KEY, KAMIS_CERT_KEY,
KAMIS_CERT_ID, EXIM_AUTHKEY) and are only substituted into request URLs.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

MARKETDIGEST_HOME = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(MARKETDIGEST_HOME))

from marketdigest.config import ConfigError  # noqa: E402
from marketdigest.price_collect import ApiSecrets, run_price_update  # noqa: E402

logger = logging.getLogger(__name__)


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Update the livestock price summary from open-data APIs.")
    parser.add_argument("--sources", default=str(MARKETDIGEST_HOME / "data" / "sources" / "sources.json"), help="Price sources config.")
    parser.add_argument("--out", default=str(MARKETDIGEST_HOME / "data" / "aggregated" / "species_summary.json"), help="Summary output path.")
    parser.add_argument("--timeout", type=float, default=20.0, help="Per-request timeout in seconds (default: 20).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        out = run_price_update(
            Path(args.sources).expanduser(),
            Path(args.out).expanduser(),
            secrets=ApiSecrets.from_env(),
            timeout_s=float(args.timeout),
        )
    except ConfigError as e:
        logger.error("%s", e)
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, separators=(",", ":")))
        return 2

    print(json.dumps(out, ensure_ascii=False, separators=(",", ":")))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
