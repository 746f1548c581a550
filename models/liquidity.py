"""
Withdrawal liquidity check for a lending pool.

available   = supply - borrow
withdrawable = available / supply
Headroom is measured against max_utilization_rate (borrow side) and
supply_cap (deposit side).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from config.params import FLOAT_SCALING, LIQUIDITY, LiquidityParams
from models.fixed_point import mul, to_float
from models.interest_rate import utilization
from models.types import MarginPool


class LiquidityStatus(str, Enum):
    HEALTHY = "healthy"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class LiquidityHealth:
    pool_id: str
    total_supply: int
    locked_in_loans: int
    available_liquidity: int
    utilization: int
    withdrawable: int
    # FLOAT_SCALING fraction of supply that can be withdrawn now
    borrowable_headroom: int
    # Additional borrow possible before max_utilization_rate
    supply_cap_headroom: int
    status: LiquidityStatus

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "available_liquidity": self.available_liquidity,
            "locked_in_loans": self.locked_in_loans,
            "utilization_pct": to_float(self.utilization) * 100.0,
            "withdrawable_pct": to_float(self.withdrawable) * 100.0,
            "borrowable_headroom": self.borrowable_headroom,
            "supply_cap_headroom": self.supply_cap_headroom,
            "status": self.status.value,
        }


def classify_utilization(u: int, params: LiquidityParams = LIQUIDITY) -> LiquidityStatus:
    pct = u * 100 / FLOAT_SCALING
    if pct > params.critical_utilization_pct:
        return LiquidityStatus.CRITICAL
    if pct > params.high_utilization_pct:
        return LiquidityStatus.HIGH
    if pct > params.moderate_utilization_pct:
        return LiquidityStatus.MODERATE
    return LiquidityStatus.HEALTHY


def liquidity_health(pool: MarginPool, params: LiquidityParams = LIQUIDITY) -> LiquidityHealth:
    """Raises InvalidSnapshotError when borrow exceeds supply."""
    state = pool.state
    u = utilization(state)
    available = state.available_liquidity
    withdrawable = available * FLOAT_SCALING // state.supply if state.supply else 0

    max_borrow = mul(state.supply, pool.config.max_utilization_rate)
    borrowable = max(max_borrow - state.borrow, 0)
    cap_headroom = max(pool.config.supply_cap - state.supply, 0)

    return LiquidityHealth(
        pool_id=pool.pool_id,
        total_supply=state.supply,
        locked_in_loans=state.borrow,
        available_liquidity=available,
        utilization=u,
        withdrawable=withdrawable,
        borrowable_headroom=borrowable,
        supply_cap_headroom=cap_headroom,
        status=classify_utilization(u, params),
    )
