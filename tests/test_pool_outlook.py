"""Tests for the pool outlook verdict and first-liquidation distance."""

import pytest

from config.params import FLOAT_SCALING, OutlookParams
from models.fixed_point import to_fixed
from models.pool_outlook import (
    GroupStats,
    Verdict,
    assess_pool,
    first_liquidation_move,
    liquidatable_stats,
    pool_verdict,
    positions_for_pool,
    within_buffer_stats,
)
from models.risk_engine import RiskEngine
from models.types import AssetAmount, MarginPosition, PriceQuote

NOW = 1_700_000_000
PRICES = {
    "SUI": PriceQuote("SUI", 1_000_000_000, 9, NOW),
    "USDC": PriceQuote("USDC", 1_000_000, 6, NOW),
}


def _margin(manager_id, base_coll=0, quote_coll=0, base_debt=0, quote_debt=0,
            base_pool="sui-pool", quote_pool="usdc-pool"):
    return MarginPosition(
        manager_id=manager_id,
        base_asset_id="SUI",
        quote_asset_id="USDC",
        collateral=(AssetAmount("SUI", base_coll * 10**9, 9),
                    AssetAmount("USDC", quote_coll * 10**6, 6)),
        debt=(AssetAmount("SUI", base_debt * 10**9, 9),
              AssetAmount("USDC", quote_debt * 10**6, 6)),
        liquidation_threshold=to_fixed("1.2"),
        base_margin_pool_id=base_pool,
        quote_margin_pool_id=quote_pool,
    )


def _assess(*positions):
    engine = RiskEngine()
    return [engine.assess(p, PRICES, NOW) for p in positions]


class TestStats:
    def setup_method(self):
        self.positions = _assess(
            _margin("liq", base_coll=110, quote_debt=100),
            _margin("near", base_coll=130, quote_debt=100),   # 8.3% buffer
            _margin("far", base_coll=200, quote_debt=100),
            _margin("idle", base_coll=50),
        )

    def test_liquidatable(self):
        stats = liquidatable_stats(self.positions)
        assert stats == GroupStats(count=1, debt_usd=100 * FLOAT_SCALING,
                                   collateral_usd=110 * FLOAT_SCALING)

    def test_within_buffer_excludes_liquidatable_and_debt_free(self):
        stats = within_buffer_stats(self.positions, 10.0)
        assert stats.count == 1
        assert stats.collateral_usd == 130 * FLOAT_SCALING

    def test_wider_buffer(self):
        assert within_buffer_stats(self.positions, 100.0).count == 2


class TestFirstLiquidation:
    def test_closest_drop_and_rise(self):
        positions = _assess(
            _margin("long-near", base_coll=150, quote_debt=100),   # -20%
            _margin("long-far", base_coll=300, quote_debt=100),    # -60%
            _margin("short", quote_coll=150, base_debt=100),       # +25%
        )
        first = first_liquidation_move(positions)
        assert first.price_drop == -20 * FLOAT_SCALING
        assert first.price_increase == 25 * FLOAT_SCALING
        assert first.closest == -20 * FLOAT_SCALING

    def test_rise_used_when_no_drop(self):
        positions = _assess(_margin("short", quote_coll=150, base_debt=100))
        first = first_liquidation_move(positions)
        assert first.price_drop is None
        assert first.closest == 25 * FLOAT_SCALING

    def test_empty(self):
        first = first_liquidation_move([])
        assert first.closest is None
        assert first.to_dict() == {"price_drop_pct": None, "price_increase_pct": None}


class TestVerdict:
    def test_liquidatable_is_fragile(self):
        verdict, reason = pool_verdict(GroupStats(2, 500 * FLOAT_SCALING, 0), 5, None)
        assert verdict == Verdict.FRAGILE
        assert "2 positions" in reason

    def test_no_positions_is_robust(self):
        assert pool_verdict(GroupStats(0, 0, 0), 0, None)[0] == Verdict.ROBUST

    @pytest.mark.parametrize("move,verdict", [
        (-4, Verdict.FRAGILE),
        (4, Verdict.FRAGILE),
        (-10, Verdict.WATCH),
        (-15, Verdict.ROBUST),
        (None, Verdict.ROBUST),
    ])
    def test_move_bands(self, move, verdict):
        closest = None if move is None else move * FLOAT_SCALING
        assert pool_verdict(GroupStats(0, 0, 0), 3, closest)[0] == verdict

    def test_custom_cutoffs(self):
        params = OutlookParams(fragile_move_pct=25.0, watch_move_pct=50.0)
        assert pool_verdict(GroupStats(0, 0, 0), 1, -20 * FLOAT_SCALING, params)[0] == Verdict.FRAGILE


class TestAssessPool:
    def test_watch_pool(self):
        outlook = assess_pool(_assess(
            _margin("a", base_coll=135, quote_debt=100),   # -11.1%
            _margin("b", base_coll=300, quote_debt=100),
        ))
        assert outlook.verdict == Verdict.WATCH
        assert outlook.total_positions == 2
        assert outlook.smallest_buffer == 12_500_000_000
        assert outlook.to_dict()["verdict"] == "watch"

    def test_fragile_pool(self):
        outlook = assess_pool(_assess(_margin("a", base_coll=100, quote_debt=100)))
        assert outlook.verdict == Verdict.FRAGILE
        assert outlook.liquidatable.count == 1
        assert outlook.smallest_buffer is None


class TestPositionsForPool:
    def test_either_side_matches(self):
        positions = [
            _margin("a", base_pool="sui-pool", quote_pool="usdc-pool"),
            _margin("b", base_pool="deep-pool", quote_pool="usdc-pool"),
            _margin("c", base_pool="deep-pool", quote_pool="wal-pool"),
        ]
        assert [p.manager_id for p in positions_for_pool(positions, "usdc-pool")] == ["a", "b"]
        assert [p.manager_id for p in positions_for_pool(positions, "sui-pool")] == ["a"]
