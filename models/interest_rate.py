"""
Kinked (two-slope) interest rate model for margin lending pools.

Below or at optimal utilization:
    R = base_rate + base_slope * U
Above optimal utilization:
    R = base_rate + base_slope * U_opt + excess_slope * (U - U_opt)

Supply rate = borrow_rate * U * (1 - protocol_spread)

Everything is computed on ints at FLOAT_SCALING. At U == U_opt the upper
branch's excess term is exactly zero, so the curve is continuous at the
kink without any tolerance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from config.params import FLOAT_SCALING, YIELD_CURVE, YieldCurveParams
from models.fixed_point import check_u64, mul
from models.results import (
    CoreError,
    ComputationError,
    Computed,
    InvalidSnapshotError,
)
from models.types import InterestConfig, MarginPool, PoolMetrics, PoolState

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurvePoint:
    utilization: int
    borrow_apr: int
    supply_apr: int


@dataclass(frozen=True)
class YieldCurve:
    """Sampled curve plus the pool's current operating point."""
    points: tuple[CurvePoint, ...]
    current: CurvePoint
    optimal_utilization: int

    def to_dict(self) -> dict:
        def _pt(p: CurvePoint) -> dict:
            return {
                "utilization": p.utilization / FLOAT_SCALING,
                "borrow_apr": p.borrow_apr / FLOAT_SCALING,
                "supply_apr": p.supply_apr / FLOAT_SCALING,
            }
        return {
            "points": [_pt(p) for p in self.points],
            "current": _pt(self.current),
            "optimal_utilization": self.optimal_utilization / FLOAT_SCALING,
        }


def utilization(state: PoolState) -> int:
    """borrow / supply at FLOAT_SCALING; raises if borrow exceeds supply."""
    supply = check_u64(state.supply, "supply")
    borrow = check_u64(state.borrow, "borrow")
    if borrow > supply:
        raise InvalidSnapshotError(f"borrow {borrow} exceeds supply {supply}")
    return state.utilization


class InterestRateModel:
    """Pool interest curve from an on-chain InterestConfig."""

    def __init__(self, config: InterestConfig):
        self.base_rate = check_u64(config.base_rate, "base_rate")
        self.base_slope = check_u64(config.base_slope, "base_slope")
        self.u_opt = check_u64(config.optimal_utilization, "optimal_utilization")
        self.excess_slope = check_u64(config.excess_slope, "excess_slope")
        if self.u_opt > FLOAT_SCALING:
            raise InvalidSnapshotError(
                f"optimal_utilization {self.u_opt} exceeds {FLOAT_SCALING}"
            )

    def borrow_apr(self, u: int) -> int:
        """Annualized borrow rate at utilization u (FLOAT_SCALING)."""
        u = check_u64(u, "utilization")
        if u > FLOAT_SCALING:
            raise InvalidSnapshotError(f"utilization {u} exceeds 100%")
        if u <= self.u_opt:
            return self.base_rate + mul(self.base_slope, u)
        return (self.base_rate
                + mul(self.base_slope, self.u_opt)
                + mul(self.excess_slope, u - self.u_opt))

    @staticmethod
    def supply_apr(u: int, borrow_apr: int, spread: int) -> int:
        """Annualized supply rate: borrow_apr * u * (1 - spread)."""
        spread = check_u64(spread, "protocol_spread")
        if spread >= FLOAT_SCALING:
            raise InvalidSnapshotError(f"protocol_spread {spread} must be < 100%")
        return mul(mul(borrow_apr, u), FLOAT_SCALING - spread)

    @property
    def max_borrow_apr(self) -> int:
        return self.borrow_apr(FLOAT_SCALING)

    def rates(self, state: PoolState, spread: int) -> tuple[int, int, int]:
        """(utilization, borrow_apr, supply_apr) for a pool state."""
        u = utilization(state)
        borrow = self.borrow_apr(u)
        return u, borrow, self.supply_apr(u, borrow, spread)

    def curve(self, spread: int, state: PoolState | None = None,
              params: YieldCurveParams = YIELD_CURVE) -> YieldCurve:
        """Sample the curve at params.steps + 1 evenly spaced utilizations."""
        steps = max(int(params.steps), 1)
        grid = np.linspace(0, FLOAT_SCALING, steps + 1, dtype=np.int64)
        points = []
        for u in grid:
            u = int(u)
            borrow = self.borrow_apr(u)
            points.append(CurvePoint(u, borrow, self.supply_apr(u, borrow, spread)))

        if state is not None:
            current = CurvePoint(*self.rates(state, spread))
        else:
            current = points[0]
        return YieldCurve(points=tuple(points), current=current,
                          optimal_utilization=self.u_opt)


def compute_pool_metrics(pool: MarginPool) -> Computed[PoolMetrics] | ComputationError:
    """Pool-level {utilization, borrow_apr, supply_apr}, or an error value."""
    try:
        model = InterestRateModel(pool.interest_config)
        u, borrow, supply = model.rates(pool.state, pool.config.protocol_spread)
    except CoreError as exc:
        LOGGER.warning("Pool %s metrics unavailable: %s", pool.pool_id, exc)
        return ComputationError.from_exception(exc)
    return Computed(PoolMetrics(pool_id=pool.pool_id, utilization=u,
                                borrow_apr=borrow, supply_apr=supply))
