from __future__ import annotations

import hashlib
from typing import Literal

Category = Literal["OFFICIAL", "NEWS"]

_PREFIX: dict[str, str] = {"OFFICIAL": "OFF", "NEWS": "NEWS"}


def make_event_id(category: Category, link: str) -> str:
    """Content-addressed id: category prefix + first 10 hex of sha1(link).

    The prefix keeps official and news ids apart even when links coincide.
    """
    prefix = _PREFIX.get(str(category).upper())
    if prefix is None:
        raise ValueError(f"unknown event category: {category!r}")
    digest = hashlib.sha1((link or "").encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:10]}"
