"""
Dashboard orchestrator: runs the full risk pipeline over one market
snapshot and emits a JSON-ready payload.

Pipeline:
1. Pool metrics (utilization, borrow / supply APR) per lending pool
2. Sampled yield curve and withdrawal liquidity per pool
3. Supplier balances and interest earned from share positions
4. Per-position risk evaluation (cached by snapshot content)
5. Risk-ratio histogram
6. Price-shock stress curve and cascade cliff
7. System-wide and per-pool outlook verdicts

Every stage works on the same immutable snapshot. Core failures (invalid
pool state, missing prices, overflow) come back as error entries in the
payload; run() never raises them.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone

from config.params import (
    DISTRIBUTION, LIQUIDITY, OUTLOOK, RISK, STRESS, USD_SCALING, YIELD_CURVE,
    load_params,
)
from models.fixed_point import to_float
from models.interest_rate import InterestRateModel, compute_pool_metrics
from models.liquidity import liquidity_health
from models.pool_outlook import assess_pool, positions_for_pool
from models.results import CoreError, ComputationError, Evaluable, EvaluationResult
from models.risk_distribution import RiskDistributionAggregator
from models.risk_engine import RiskEngine
from models.share_ledger import interest_earned, position_balance
from models.snapshot_cache import SnapshotCache, pool_key, position_key
from models.stress_tests import StressSimulator, detect_cliff
from models.types import AtRiskPosition, MarginPool, MarketSnapshot, Position

LOGGER = logging.getLogger(__name__)


@dataclass
class DashboardOutput:
    """Complete dashboard output."""
    timestamp: str
    snapshot_timestamp: int
    pools: list
    supplies: list
    positions: list
    risk_distribution: list
    stress_curve: list
    cliff: dict | None
    outlook: dict
    summary: dict

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(asdict(self), indent=indent)


def _error(exc: CoreError) -> dict:
    return ComputationError.from_exception(exc).to_dict()


class Dashboard:
    """
    Orchestrates the risk pipeline for margin lending pools.

    A single Dashboard can be reused across polls: unchanged pools and
    positions are served from its snapshot cache.
    """

    def __init__(self, params: dict | None = None, cache: SnapshotCache | None = None):
        if params is None:
            params = load_params()
        self.params = params or {}

        self.risk_params = self.params.get("risk", RISK)
        self.stress_params = self.params.get("stress", STRESS)
        self.liquidity_params = self.params.get("liquidity", LIQUIDITY)
        self.outlook_params = self.params.get("outlook", OUTLOOK)
        self.yield_curve_params = self.params.get("yield_curve", YIELD_CURVE)

        self.engine = RiskEngine(self.risk_params)
        self.simulator = StressSimulator(self.engine, self.stress_params)
        self.aggregator = RiskDistributionAggregator(self.params.get("distribution", DISTRIBUTION))
        self.cache = cache if cache is not None else SnapshotCache()

    # ------------------------------------------------------------------
    # Pools and suppliers
    # ------------------------------------------------------------------

    def _pool_section(self, pool: MarginPool) -> dict:
        metrics = self.cache.get_or_compute(
            pool_key(pool), lambda: compute_pool_metrics(pool), tags=(pool.pool_id,),
        )
        section = {
            "pool_id": pool.pool_id,
            "asset_id": pool.asset_id,
            "metrics": metrics.value.to_dict() if metrics.ok else metrics.to_dict(),
        }
        try:
            model = InterestRateModel(pool.interest_config)
            curve = model.curve(pool.config.protocol_spread, pool.state,
                                self.yield_curve_params)
            section["yield_curve"] = curve.to_dict()
        except CoreError as exc:
            section["yield_curve"] = _error(exc)
        try:
            section["liquidity"] = liquidity_health(pool, self.liquidity_params).to_dict()
        except CoreError as exc:
            section["liquidity"] = _error(exc)
        return section

    @staticmethod
    def _supply_entry(supply: Position, pools: dict[str, MarginPool]) -> dict:
        entry = {"owner": supply.owner, "pool_id": supply.pool_id,
                 "shares": supply.shares, "referral": supply.referral}
        pool = pools.get(supply.pool_id)
        if pool is None:
            entry.update({"status": "error", "kind": "invalid_snapshot",
                          "message": f"unknown pool {supply.pool_id}"})
            return entry
        scale = 10 ** pool.decimals
        try:
            balance = position_balance(supply, pool.state)
            earned = interest_earned(supply, pool.state)
        except CoreError as exc:
            entry.update(_error(exc))
            return entry
        entry.update({
            "status": "ok",
            "balance": balance / scale,
            # None until the cost basis is known
            "interest_earned": None if earned is None else earned / scale,
        })
        return entry

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: MarketSnapshot) -> list[EvaluationResult]:
        """Evaluate every margin position, serving unchanged ones from cache."""
        prices = snapshot.price_map()
        as_of = snapshot.as_of_timestamp
        results = []
        for position in snapshot.positions:
            key = position_key(position, prices, as_of,
                               max_price_age_seconds=self.risk_params.max_price_age_seconds)
            tags = [position.manager_id]
            tags += [pool_id for pool_id in (position.base_margin_pool_id,
                                             position.quote_margin_pool_id) if pool_id]
            results.append(self.cache.get_or_compute(
                key,
                lambda p=position: self.engine.evaluate(p, prices, as_of),
                tags=tags,
            ))
        return results

    def _position_entry(self, result: EvaluationResult) -> dict:
        if not isinstance(result, Evaluable):
            return result.to_dict()
        at_risk = result.position
        entry = at_risk.to_dict()
        entry["risk_level"] = self.engine.risk_level(at_risk).value
        move = self.engine.price_move_to_liquidation(at_risk)
        entry["price_move_to_liquidation_pct"] = None if move is None else to_float(move)
        return entry

    def _pool_outlooks(self, snapshot: MarketSnapshot,
                       by_manager: dict[str, AtRiskPosition]) -> dict:
        outlooks = {}
        for pool in snapshot.pools:
            members = [by_manager[p.manager_id]
                       for p in positions_for_pool(snapshot.positions, pool.pool_id)
                       if p.manager_id in by_manager]
            outlooks[pool.pool_id] = assess_pool(members, self.engine,
                                                 self.outlook_params).to_dict()
        return outlooks

    def invalidate_position(self, manager_id: str) -> int:
        """Drop cached evaluations for one margin manager."""
        return self.cache.invalidate_tag(manager_id)

    def invalidate_pool(self, pool_id: str) -> int:
        """Drop cached pool metrics and the evaluations of positions borrowing from it."""
        return self.cache.invalidate_tag(pool_id)

    # ------------------------------------------------------------------

    def run(self, snapshot: MarketSnapshot, shock_asset_id: str | None = None) -> DashboardOutput:
        """Run the full pipeline for one snapshot."""
        pools_by_id = {pool.pool_id: pool for pool in snapshot.pools}
        pool_sections = [self._pool_section(pool) for pool in snapshot.pools]
        supplies = [self._supply_entry(s, pools_by_id) for s in snapshot.supplies]

        evaluations = self.evaluate(snapshot)
        at_risk = [r.position for r in evaluations if isinstance(r, Evaluable)]
        unevaluable = len(evaluations) - len(at_risk)
        if unevaluable:
            LOGGER.info("%d of %d positions could not be evaluated",
                        unevaluable, len(evaluations))
        by_manager = {p.manager_id: p for p in at_risk}

        distribution = self.aggregator.distribution(at_risk)

        stress_curve = self.simulator.sweep(snapshot.positions, snapshot.price_map(),
                                            shock_asset_id, snapshot.as_of_timestamp)
        cliff = detect_cliff(stress_curve, self.stress_params.cliff_min_multiplier)

        outlook = assess_pool(at_risk, self.engine, self.outlook_params).to_dict()
        outlook["pools"] = self._pool_outlooks(snapshot, by_manager)

        total_debt = sum(p.debt_usd for p in at_risk)
        return DashboardOutput(
            timestamp=datetime.now(timezone.utc).isoformat(),
            snapshot_timestamp=snapshot.as_of_timestamp,
            pools=pool_sections,
            supplies=supplies,
            positions=[self._position_entry(r) for r in evaluations],
            risk_distribution=[b.to_dict() for b in distribution],
            stress_curve=[
                {
                    "shock_pct": point.shock_pct,
                    "liquidatable_count": point.liquidatable_count,
                    "debt_at_risk_usd": to_float(point.debt_at_risk_usd, USD_SCALING),
                }
                for point in stress_curve
            ],
            cliff=cliff.to_dict() if cliff is not None else None,
            outlook=outlook,
            summary={
                "pools": len(snapshot.pools),
                "positions": len(evaluations),
                "evaluable": len(at_risk),
                "unevaluable": unevaluable,
                "total_debt_usd": to_float(total_debt, USD_SCALING),
                "cache_hits": self.cache.hits,
                "cache_misses": self.cache.misses,
            },
        )
