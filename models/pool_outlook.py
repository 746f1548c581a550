"""
Forward-looking risk summary for one lending pool's borrowers.

Combines the current liquidatable set, positions close to their threshold,
and the smallest base-asset price move that would trigger the first new
liquidation into a robust / watch / fragile verdict.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from config.params import OUTLOOK, USD_SCALING, OutlookParams
from models.fixed_point import to_fixed, to_float
from models.risk_engine import RiskEngine
from models.types import AtRiskPosition, MarginPosition


class Verdict(str, Enum):
    ROBUST = "robust"
    WATCH = "watch"
    FRAGILE = "fragile"


@dataclass(frozen=True)
class GroupStats:
    count: int
    debt_usd: int
    collateral_usd: int

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "debt_usd": to_float(self.debt_usd, USD_SCALING),
            "collateral_usd": to_float(self.collateral_usd, USD_SCALING),
        }


@dataclass(frozen=True)
class FirstLiquidation:
    """Closest signed base-price moves (% at FLOAT_SCALING) to a new liquidation."""
    price_drop: int | None
    price_increase: int | None

    @property
    def closest(self) -> int | None:
        return self.price_drop if self.price_drop is not None else self.price_increase

    def to_dict(self) -> dict:
        return {
            "price_drop_pct": None if self.price_drop is None else to_float(self.price_drop),
            "price_increase_pct": (None if self.price_increase is None
                                   else to_float(self.price_increase)),
        }


@dataclass(frozen=True)
class PoolOutlook:
    verdict: Verdict
    reason: str
    total_positions: int
    liquidatable: GroupStats
    within_buffer: GroupStats
    first_liquidation: FirstLiquidation
    smallest_buffer: int | None
    # Smallest distance to liquidation among healthy indebted positions

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "reason": self.reason,
            "total_positions": self.total_positions,
            "liquidatable": self.liquidatable.to_dict(),
            "within_buffer": self.within_buffer.to_dict(),
            "first_liquidation": self.first_liquidation.to_dict(),
            "smallest_buffer_pct": (None if self.smallest_buffer is None
                                    else to_float(self.smallest_buffer)),
        }


def positions_for_pool(positions: Iterable[MarginPosition], pool_id: str) -> list[MarginPosition]:
    """Positions borrowing from or collateralised in `pool_id` on either side."""
    return [p for p in positions
            if pool_id in (p.base_margin_pool_id, p.quote_margin_pool_id)]


def _stats(positions: Iterable[AtRiskPosition]) -> GroupStats:
    positions = list(positions)
    return GroupStats(
        count=len(positions),
        debt_usd=sum(p.debt_usd for p in positions),
        collateral_usd=sum(p.collateral_usd for p in positions),
    )


def liquidatable_stats(positions: Sequence[AtRiskPosition]) -> GroupStats:
    return _stats(p for p in positions if p.is_liquidatable)


def within_buffer_stats(positions: Sequence[AtRiskPosition], buffer_pct: float) -> GroupStats:
    """Healthy indebted positions whose distance to liquidation is <= buffer_pct."""
    limit = to_fixed(buffer_pct)
    return _stats(p for p in positions
                  if not p.is_liquidatable and p.has_debt
                  and p.distance_to_liquidation <= limit)


def first_liquidation_move(positions: Sequence[AtRiskPosition],
                           engine: RiskEngine | None = None) -> FirstLiquidation:
    """Smallest price drop and smallest price rise that liquidate some position."""
    engine = engine or RiskEngine()
    drop = None
    rise = None
    for position in positions:
        move = engine.price_move_to_liquidation(position)
        if move is None or move == 0:
            continue
        if move < 0 and (drop is None or move > drop):
            drop = move
        elif move > 0 and (rise is None or move < rise):
            rise = move
    return FirstLiquidation(price_drop=drop, price_increase=rise)


def smallest_buffer(positions: Sequence[AtRiskPosition]) -> int | None:
    buffers = [p.distance_to_liquidation for p in positions
               if not p.is_liquidatable and p.has_debt]
    return min(buffers) if buffers else None


def pool_verdict(liquidatable: GroupStats, total_positions: int,
                 closest_move: int | None,
                 params: OutlookParams = OUTLOOK) -> tuple[Verdict, str]:
    if liquidatable.count > 0:
        plural = "s" if liquidatable.count > 1 else ""
        debt = to_float(liquidatable.debt_usd, USD_SCALING)
        return Verdict.FRAGILE, (f"{liquidatable.count} position{plural} can be "
                                 f"liquidated now (${debt:,.0f} debt)")
    if total_positions == 0:
        return Verdict.ROBUST, "No open positions"
    if closest_move is not None:
        move = abs(closest_move)
        move_pct = to_float(move)
        if move < to_fixed(params.fragile_move_pct):
            return Verdict.FRAGILE, f"First liquidation at just {move_pct:.1f}% price move"
        if move < to_fixed(params.watch_move_pct):
            return Verdict.WATCH, f"First liquidation at {move_pct:.1f}% price move"
    return Verdict.ROBUST, "All positions well-collateralized"


def assess_pool(positions: Sequence[AtRiskPosition], engine: RiskEngine | None = None,
                params: OutlookParams = OUTLOOK) -> PoolOutlook:
    """Outlook for an already-evaluated set of positions."""
    liquidatable = liquidatable_stats(positions)
    first = first_liquidation_move(positions, engine)
    verdict, reason = pool_verdict(liquidatable, len(positions), first.closest, params)
    return PoolOutlook(
        verdict=verdict,
        reason=reason,
        total_positions=len(positions),
        liquidatable=liquidatable,
        within_buffer=within_buffer_stats(positions, params.within_buffer_pct),
        first_liquidation=first,
        smallest_buffer=smallest_buffer(positions),
    )
