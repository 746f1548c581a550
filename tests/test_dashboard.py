"""End-to-end tests for the dashboard pipeline."""

import json

import pytest

from config.params import RiskParams
from dashboard import Dashboard
from models.fixed_point import to_fixed
from models.snapshot_cache import SnapshotCache
from models.types import (
    AssetAmount,
    InterestConfig,
    MarginPool,
    MarginPosition,
    MarketSnapshot,
    PoolConfig,
    PoolState,
    Position,
    PriceQuote,
)

NOW = 1_700_000_000


def _pool(pool_id, asset_id, decimals, supply, borrow):
    return MarginPool(
        pool_id=pool_id,
        asset_id=asset_id,
        decimals=decimals,
        state=PoolState(supply=supply, borrow=borrow,
                        supply_shares=supply, borrow_shares=borrow),
        config=PoolConfig(supply_cap=supply * 2, max_utilization_rate=to_fixed("0.9"),
                          protocol_spread=to_fixed("0.1"), min_borrow=1),
        interest_config=InterestConfig(
            base_rate=to_fixed("0.02"), base_slope=to_fixed("0.06"),
            optimal_utilization=to_fixed("0.7"), excess_slope=to_fixed("0.15"),
        ),
    )


def _manager(manager_id, collateral_sui, debt_usdc, base_asset="SUI"):
    return MarginPosition(
        manager_id=manager_id,
        base_asset_id=base_asset,
        quote_asset_id="USDC",
        collateral=(AssetAmount(base_asset, collateral_sui * 10**9, 9),),
        debt=(AssetAmount("USDC", debt_usdc * 10**6, 6),),
        liquidation_threshold=to_fixed("1.2"),
        user_liquidation_reward=to_fixed("0.02"),
        pool_liquidation_reward=to_fixed("0.03"),
        base_margin_pool_id="sui-pool",
        quote_margin_pool_id="usdc-pool",
    )


def _snapshot(**overrides):
    values = dict(
        as_of_timestamp=NOW,
        pools=(
            _pool("usdc-pool", "USDC", 6, 1_000_000 * 10**6, 700_000 * 10**6),
            _pool("bad-pool", "WAL", 9, 100, 200),
        ),
        positions=(
            _manager("healthy", 150, 100),
            _manager("underwater", 110, 100),
            _manager("unpriced", 150, 100, base_asset="WAL"),
        ),
        supplies=(
            Position(shares=5_000 * 10**6, owner="0xalice", pool_id="usdc-pool",
                     cost_basis=4_900 * 10**6),
            Position(shares=1, owner="0xbob", pool_id="missing-pool"),
        ),
        prices=(
            PriceQuote("SUI", 1_000_000_000, 9, NOW),
            PriceQuote("USDC", 1_000_000, 6, NOW),
        ),
    )
    values.update(overrides)
    return MarketSnapshot(**values)


class TestDashboard:
    def setup_method(self):
        self.dashboard = Dashboard(params={"risk": RiskParams()})

    def test_runs_without_raising(self):
        output = self.dashboard.run(_snapshot())
        assert output.snapshot_timestamp == NOW
        assert output.summary["positions"] == 3
        assert output.summary["evaluable"] == 2
        assert output.summary["unevaluable"] == 1

    def test_pool_metrics_and_errors(self):
        output = self.dashboard.run(_snapshot())
        good, bad = output.pools
        assert good["metrics"]["borrow_apr"] == pytest.approx(0.062)
        assert good["metrics"]["supply_apr"] == pytest.approx(0.03906)
        assert len(good["yield_curve"]["points"]) == 17
        assert good["liquidity"]["status"] == "moderate"
        assert bad["metrics"]["status"] == "error"
        assert bad["metrics"]["kind"] == "invalid_snapshot"
        assert bad["liquidity"]["status"] == "error"

    def test_supplies(self):
        alice, bob = self.dashboard.run(_snapshot()).supplies
        assert alice["balance"] == pytest.approx(5_000.0)
        assert alice["interest_earned"] == pytest.approx(100.0)
        assert bob["status"] == "error"

    def test_positions_carry_status(self):
        entries = {p["manager_id"]: p for p in self.dashboard.run(_snapshot()).positions}
        assert entries["healthy"]["risk_level"] == "watch"
        assert entries["healthy"]["price_move_to_liquidation_pct"] == pytest.approx(-20.0)
        assert entries["underwater"]["is_liquidatable"] is True
        assert entries["underwater"]["estimated_reward_usd"] == pytest.approx(5.0)
        assert entries["unpriced"]["status"] == "unknown"
        assert entries["unpriced"]["reason"] == "missing_price"

    def test_distribution_and_outlook(self):
        output = self.dashboard.run(_snapshot())
        assert sum(b["count"] for b in output.risk_distribution) == 2
        assert output.risk_distribution[0]["count"] == 1
        assert output.outlook["verdict"] == "fragile"
        assert output.outlook["liquidatable"]["count"] == 1
        assert output.outlook["pools"]["usdc-pool"]["total_positions"] == 2

    def test_stress_curve(self):
        output = self.dashboard.run(_snapshot())
        assert len(output.stress_curve) == 26
        assert output.stress_curve[0]["liquidatable_count"] == 1
        assert output.stress_curve[-1]["liquidatable_count"] == 2
        # 100 -> 200 is exactly a 2x jump at the first shock that reaches "healthy"
        assert output.cliff == {"shock_pct": -20, "debt_multiplier": pytest.approx(2.0)}

    def test_json_serializable(self):
        payload = json.loads(self.dashboard.run(_snapshot()).to_json())
        assert payload["summary"]["evaluable"] == 2
        assert payload["cliff"]["shock_pct"] == -20

    def test_empty_snapshot(self):
        output = self.dashboard.run(MarketSnapshot(as_of_timestamp=NOW))
        assert output.positions == []
        assert output.cliff is None
        assert output.outlook["verdict"] == "robust"
        assert len(output.risk_distribution) == 5


class TestDashboardCache:
    def test_second_run_hits_cache(self):
        dashboard = Dashboard(params={}, cache=SnapshotCache())
        dashboard.run(_snapshot())
        misses = dashboard.cache.misses
        dashboard.run(_snapshot())
        assert dashboard.cache.misses == misses
        assert dashboard.cache.hits >= 5

    def test_later_poll_with_unchanged_content_hits(self):
        dashboard = Dashboard(params={})
        dashboard.run(_snapshot())
        misses, hits = dashboard.cache.misses, dashboard.cache.hits
        dashboard.run(_snapshot(as_of_timestamp=NOW + 5))
        assert dashboard.cache.misses == misses
        # two pools and three positions
        assert dashboard.cache.hits == hits + 5

    def test_stale_quotes_recompute(self):
        dashboard = Dashboard(params={})
        dashboard.run(_snapshot())
        misses = dashboard.cache.misses
        output = dashboard.run(_snapshot(as_of_timestamp=NOW + 120))
        assert dashboard.cache.misses == misses + 3
        assert {p["status"] for p in output.positions} == {"unknown"}
        reasons = {p["manager_id"]: p["reason"] for p in output.positions}
        assert reasons == {"healthy": "stale_price", "underwater": "stale_price",
                           "unpriced": "missing_price"}

    def test_new_price_timestamp_recomputes(self):
        dashboard = Dashboard(params={})
        dashboard.run(_snapshot())
        misses = dashboard.cache.misses
        later = _snapshot(as_of_timestamp=NOW + 5, prices=(
            PriceQuote("SUI", 1_000_000_000, 9, NOW + 5),
            PriceQuote("USDC", 1_000_000, 6, NOW + 5),
        ))
        dashboard.run(later)
        assert dashboard.cache.misses == misses + 3

    def test_invalidate_position(self):
        dashboard = Dashboard(params={})
        dashboard.run(_snapshot())
        assert dashboard.invalidate_position("healthy") == 1

    def test_invalidate_pool_drops_its_positions(self):
        dashboard = Dashboard(params={})
        dashboard.run(_snapshot())
        # pool metrics plus the three managers borrowing from usdc-pool
        assert dashboard.invalidate_pool("usdc-pool") == 4
        misses = dashboard.cache.misses
        dashboard.run(_snapshot())
        assert dashboard.cache.misses == misses + 4
