"""Targeted tag extraction for RSS 2.0 and Atom feeds.

This is not an XML parser. It locates ``<item>`` (RSS) or ``<entry>`` (Atom)
blocks with non-greedy regular expressions and pulls the title, link and date
out of each block. It assumes well-formed, shallow feed documents of the known
shapes; malformed input yields partial or no items rather than an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_ENTITY_RE = re.compile(r"&(amp|lt|gt|quot|#39);")
_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "#39": "'"}

_ITEM_RE = re.compile(r"<item\b[^>]*>.*?</item>", re.DOTALL | re.IGNORECASE)
_ENTRY_RE = re.compile(r"<entry\b[^>]*>.*?</entry>", re.DOTALL | re.IGNORECASE)
_ATOM_LINK_HREF_RE = re.compile(r"""<link\b[^>]*\bhref=["']([^"']+)["'][^>]*/?>""", re.IGNORECASE)


@dataclass(frozen=True)
class FeedItem:
    title: str
    link: str
    published_raw: str    # as found in the feed, "" when absent


def decode_entities(s: str | None) -> str:
    """Unwrap CDATA sections and decode the five standard XML entities."""
    if not s:
        return ""
    s = _CDATA_RE.sub(lambda m: m.group(1), s)
    return _ENTITY_RE.sub(lambda m: _ENTITIES[m.group(1)], s)


@lru_cache(maxsize=32)
def _tag_re(tag: str) -> re.Pattern[str]:
    t = re.escape(tag)
    return re.compile(rf"<{t}(?:\s[^>]*)?>(.*?)</{t}>", re.DOTALL | re.IGNORECASE)


def extract_tag(block: str, tag: str) -> str:
    """Decoded, stripped content of the first ``<tag>...</tag>`` in *block*."""
    m = _tag_re(tag).search(block)
    if not m:
        return ""
    return decode_entities(m.group(1).strip()).strip()


def extract_atom_link(block: str) -> str:
    m = _ATOM_LINK_HREF_RE.search(block)
    if m:
        return decode_entities(m.group(1).strip())
    return extract_tag(block, "link")


def _iter_rss_items(text: str) -> Iterator[FeedItem]:
    for m in _ITEM_RE.finditer(text):
        block = m.group(0)
        title = extract_tag(block, "title")
        link = extract_tag(block, "link")
        if not title or not link:
            continue
        published = extract_tag(block, "pubDate") or extract_tag(block, "dc:date")
        yield FeedItem(title=title, link=link, published_raw=published)


def _iter_atom_entries(text: str) -> Iterator[FeedItem]:
    for m in _ENTRY_RE.finditer(text):
        block = m.group(0)
        title = extract_tag(block, "title")
        link = extract_atom_link(block)
        if not title or not link:
            continue
        published = extract_tag(block, "updated") or extract_tag(block, "published")
        yield FeedItem(title=title, link=link, published_raw=published)


def iter_feed_items(text: str | None) -> Iterator[FeedItem]:
    """Yield items from an RSS feed, or from an Atom feed if no RSS item matched.

    Feed order is preserved, so callers can cap with itertools.islice().
    """
    if not text:
        return
    found_rss = False
    for item in _iter_rss_items(text):
        found_rss = True
        yield item
    if found_rss:
        return
    yield from _iter_atom_entries(text)
