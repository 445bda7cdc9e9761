from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class PersistedStateReadError(RuntimeError):
    """Prior output file is missing or corrupt."""


def read_prior_doc(path: Path) -> dict[str, Any]:
    """Read a prior output document. Raises PersistedStateReadError."""
    try:
        obj = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise PersistedStateReadError(f"prior output missing: {path}") from e
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PersistedStateReadError(f"prior output unreadable: {path}: {e}") from e
    if not isinstance(obj, dict):
        raise PersistedStateReadError(f"prior output is not an object: {path}")
    items = obj.get("items")
    if not isinstance(items, list):
        raise PersistedStateReadError(f"prior output has no items list: {path}")
    return obj


def load_prior_items(path: Path) -> list[dict[str, Any]]:
    """Prior events for a category; an empty baseline when the file is unusable."""
    try:
        doc = read_prior_doc(path)
    except PersistedStateReadError as e:
        if Path(path).exists():
            logger.warning("%s; starting from empty state", e)
        else:
            logger.info("%s; starting from empty state", e)
        return []
    return [it for it in doc["items"] if isinstance(it, dict)]


def build_output_doc(
    items: list[dict[str, Any]],
    statuses: Iterable[dict[str, Any]],
    *,
    generated_at: str,
    disclaimer: str | None = None,
) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "generated_at": generated_at,
        "items": items,
        "_sources": list(statuses),
    }
    if disclaimer is not None:
        doc["disclaimer"] = disclaimer
    return doc


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp.{os.getpid()}")
    payload = json.dumps(data, ensure_ascii=False, indent=2) + "\n"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
