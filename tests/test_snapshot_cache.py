"""Tests for the content-hash snapshot cache."""

import threading
from dataclasses import replace

import pytest

from models.fixed_point import to_fixed
from models.snapshot_cache import SnapshotCache, content_key, position_key
from models.types import AssetAmount, MarginPosition, PriceQuote

NOW = 1_700_000_000


def _position(amount=150):
    return MarginPosition(
        manager_id="mm-1",
        base_asset_id="SUI",
        quote_asset_id="USDC",
        collateral=(AssetAmount("SUI", amount * 10**9, 9),),
        debt=(AssetAmount("USDC", 100 * 10**6, 6),),
        liquidation_threshold=to_fixed("1.2"),
    )


def _prices(ts=NOW):
    return {
        "SUI": PriceQuote("SUI", 1_000_000_000, 9, ts),
        "USDC": PriceQuote("USDC", 1_000_000, 6, ts),
        "DEEP": PriceQuote("DEEP", 20_000_000, 9, ts),
    }


class TestKeys:
    def test_same_content_same_key(self):
        assert position_key(_position(), _prices()) == position_key(_position(), _prices())

    def test_position_change_changes_key(self):
        assert position_key(_position(150), _prices()) != position_key(_position(151), _prices())

    def test_price_timestamp_changes_key(self):
        assert position_key(_position(), _prices(NOW)) != position_key(_position(), _prices(NOW + 1))

    def test_later_poll_with_same_quotes_same_key(self):
        assert (position_key(_position(), _prices(), as_of=NOW)
                == position_key(_position(), _prices(), as_of=NOW + 5))

    def test_quote_going_stale_changes_key(self):
        fresh = position_key(_position(), _prices(), as_of=NOW + 60)
        stale = position_key(_position(), _prices(), as_of=NOW + 61)
        assert fresh != stale
        assert stale == position_key(_position(), _prices(), as_of=NOW + 600)

    def test_max_age_decides_freshness(self):
        assert (position_key(_position(), _prices(), as_of=NOW + 30, max_price_age_seconds=10)
                != position_key(_position(), _prices(), as_of=NOW + 30))

    def test_unrelated_price_ignored(self):
        prices = _prices()
        moved = dict(prices, DEEP=replace(prices["DEEP"], usd_price=1))
        assert position_key(_position(), prices) == position_key(_position(), moved)

    def test_shock_changes_key(self):
        assert (position_key(_position(), _prices(), price_multipliers={"SUI": 700_000_000})
                != position_key(_position(), _prices()))

    def test_content_key_is_hex(self):
        assert len(content_key("a", 1)) == 64


class TestSnapshotCache:
    def setup_method(self):
        self.cache = SnapshotCache(max_entries=3)

    def test_get_or_compute_memoizes(self):
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert self.cache.get_or_compute("k", compute) == "value"
        assert self.cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1
        assert self.cache.hits == 1
        assert self.cache.misses == 1

    def test_invalidate(self):
        self.cache.put("k", 1)
        assert self.cache.invalidate("k")
        assert "k" not in self.cache
        assert not self.cache.invalidate("k")

    def test_invalidate_tag(self):
        self.cache.put("a", 1, tags=("mm-1",))
        self.cache.put("b", 2, tags=("mm-1",))
        self.cache.put("c", 3, tags=("mm-2",))
        assert self.cache.invalidate_tag("mm-1") == 2
        assert len(self.cache) == 1
        assert self.cache.get("c") == 3

    def test_lru_eviction(self):
        for key in "abc":
            self.cache.put(key, key)
        self.cache.get("a")
        self.cache.put("d", "d")
        assert "b" not in self.cache
        assert "a" in self.cache
        assert len(self.cache) == 3

    def test_clear(self):
        self.cache.put("a", 1, tags=("t",))
        self.cache.clear()
        assert len(self.cache) == 0
        assert self.cache.invalidate_tag("t") == 0

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            SnapshotCache(max_entries=0)

    def test_concurrent_access(self):
        cache = SnapshotCache()

        def worker(offset):
            for i in range(200):
                cache.get_or_compute(f"k{(i + offset) % 50}", lambda i=i: i)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 50
