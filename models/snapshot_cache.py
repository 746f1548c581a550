"""
Content-addressed memo cache for per-snapshot computations.

Entries are keyed by a sha256 of the frozen inputs (pool state, position,
price quotes with their timestamps and fresh/stale status), so a changed
input is a new key and never a stale hit. Entries can also be tagged, e.g.
by manager id or pool id, and invalidated explicitly when the caller knows
the underlying object moved.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from config.params import RISK
from models.types import MarginPool, MarginPosition, PriceQuote

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 4096


def content_key(*parts: Any) -> str:
    """sha256 over the repr of frozen dataclasses / tuples / scalars."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(repr(part).encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()


def _freshness(quote: PriceQuote | None, as_of: int | None,
               max_price_age_seconds: int) -> bool | None:
    if quote is None or as_of is None:
        return None
    return as_of - quote.as_of_timestamp <= max_price_age_seconds


def position_key(position: MarginPosition, prices: Mapping[str, PriceQuote],
                 as_of: int | None = None,
                 price_multipliers: Mapping[str, int] | None = None,
                 max_price_age_seconds: int = RISK.max_price_age_seconds) -> str:
    """
    Key over the position and only the quotes it actually reads.

    The snapshot time enters only through each quote's fresh/stale status,
    so a later poll with the same quotes maps to the same key until a quote
    ages past max_price_age_seconds.
    """
    quotes = tuple(
        (asset_id, prices.get(asset_id),
         _freshness(prices.get(asset_id), as_of, max_price_age_seconds))
        for asset_id in sorted(position.asset_ids)
    )
    multipliers = tuple(sorted((price_multipliers or {}).items()))
    return content_key("position", position, quotes, multipliers)


def pool_key(pool: MarginPool) -> str:
    return content_key("pool", pool)


class SnapshotCache:
    """Thread-safe LRU memo cache with explicit invalidation."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._tags: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str, default=None):
        with self._lock:
            if key not in self._entries:
                return default
            self._entries.move_to_end(key)
            return self._entries[key]

    def put(self, key: str, value, tags: Iterable[str] = ()) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._drop_from_tags(evicted)

    def get_or_compute(self, key: str, compute: Callable[[], T],
                       tags: Iterable[str] = ()) -> T:
        """
        Return the cached value for key, computing and storing it on a miss.

        compute() runs outside the lock; two threads missing on the same key
        may both compute, and the later store wins. Values are pure functions
        of the key, so either result is correct.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                LOGGER.debug("Snapshot cache hit %s", key[:12])
                return self._entries[key]
            self.misses += 1
        value = compute()
        self.put(key, value, tags)
        return value

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            self._drop_from_tags(key)
            return True

    def invalidate_tag(self, tag: str) -> int:
        """Drop every entry stored under tag; returns how many were removed."""
        with self._lock:
            keys = self._tags.pop(tag, set())
            removed = 0
            for key in keys:
                if key in self._entries:
                    del self._entries[key]
                    removed += 1
                self._drop_from_tags(key)
        if removed:
            LOGGER.debug("Invalidated %d cache entries for %s", removed, tag)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()
            self.hits = 0
            self.misses = 0

    def _drop_from_tags(self, key: str) -> None:
        for tag in list(self._tags):
            keys = self._tags[tag]
            keys.discard(key)
            if not keys:
                del self._tags[tag]
