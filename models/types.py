"""Frozen value types for pool snapshots, positions and risk outputs."""

from __future__ import annotations

from dataclasses import dataclass

from config.params import FLOAT_SCALING, USD_SCALING
from models.fixed_point import to_float


@dataclass(frozen=True)
class PoolState:
    """Aggregate pool ledger, native smallest units."""
    supply: int
    borrow: int
    supply_shares: int
    borrow_shares: int
    last_update_timestamp: int = 0

    @property
    def utilization(self) -> int:
        """borrow / supply at FLOAT_SCALING, 0 for an empty pool."""
        if self.supply == 0:
            return 0
        return self.borrow * FLOAT_SCALING // self.supply

    @property
    def available_liquidity(self) -> int:
        return max(self.supply - self.borrow, 0)


@dataclass(frozen=True)
class InterestConfig:
    """Kinked rate curve parameters, all at FLOAT_SCALING."""
    base_rate: int
    base_slope: int
    optimal_utilization: int
    excess_slope: int


@dataclass(frozen=True)
class PoolConfig:
    supply_cap: int
    max_utilization_rate: int
    # FLOAT_SCALING
    protocol_spread: int
    # FLOAT_SCALING, in [0, 1)
    min_borrow: int


@dataclass(frozen=True)
class Position:
    """Supplier claim on a pool."""
    shares: int
    referral: str | None = None
    owner: str = ""
    pool_id: str = ""
    cost_basis: int | None = None
    # Amount originally supplied, native units; None until the indexer catches up


@dataclass(frozen=True)
class MarginPool:
    """One lending pool snapshot as delivered by the chain-data collaborator."""
    pool_id: str
    asset_id: str
    decimals: int
    state: PoolState
    config: PoolConfig
    interest_config: InterestConfig


@dataclass(frozen=True)
class PriceQuote:
    """usd_price / 10**price_decimals dollars per whole token."""
    asset_id: str
    usd_price: int
    price_decimals: int
    as_of_timestamp: int


@dataclass(frozen=True)
class AssetAmount:
    asset_id: str
    amount: int
    decimals: int


@dataclass(frozen=True)
class MarginPosition:
    """Borrower (margin manager) holdings across a base/quote pair."""
    manager_id: str
    base_asset_id: str
    quote_asset_id: str
    collateral: tuple[AssetAmount, ...]
    debt: tuple[AssetAmount, ...]
    liquidation_threshold: int
    # Risk ratio at FLOAT_SCALING, e.g. 1_100_000_000 for 1.1x
    user_liquidation_reward: int = 0
    pool_liquidation_reward: int = 0
    base_margin_pool_id: str = ""
    quote_margin_pool_id: str = ""

    @property
    def reward_fraction(self) -> int:
        return self.user_liquidation_reward + self.pool_liquidation_reward

    @property
    def asset_ids(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for holding in self.collateral + self.debt:
            seen.setdefault(holding.asset_id, None)
        return tuple(seen)


@dataclass(frozen=True)
class AssetValuation:
    asset_id: str
    amount: int
    decimals: int
    usd_value: int
    # USD_SCALING

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "amount": self.amount / 10 ** self.decimals,
            "usd_value": to_float(self.usd_value, USD_SCALING),
        }


@dataclass(frozen=True)
class AtRiskPosition:
    """RiskEngine output for one margin manager."""
    manager_id: str
    base_asset_id: str
    quote_asset_id: str
    collateral: tuple[AssetValuation, ...]
    debt: tuple[AssetValuation, ...]
    collateral_usd: int
    debt_usd: int
    liquidation_threshold: int
    risk_ratio: int
    is_liquidatable: bool
    distance_to_liquidation: int
    # Signed percent at FLOAT_SCALING; negative means already liquidatable
    estimated_reward_usd: int
    reward_fraction: int = 0

    @property
    def has_debt(self) -> bool:
        return self.debt_usd > 0

    def collateral_usd_of(self, asset_id: str) -> int:
        return sum(v.usd_value for v in self.collateral if v.asset_id == asset_id)

    def debt_usd_of(self, asset_id: str) -> int:
        return sum(v.usd_value for v in self.debt if v.asset_id == asset_id)

    def to_dict(self) -> dict:
        return {
            "manager_id": self.manager_id,
            "status": "ok",
            "collateral": [v.to_dict() for v in self.collateral],
            "debt": [v.to_dict() for v in self.debt],
            "collateral_usd": to_float(self.collateral_usd, USD_SCALING),
            "debt_usd": to_float(self.debt_usd, USD_SCALING),
            "liquidation_threshold": to_float(self.liquidation_threshold),
            "risk_ratio": to_float(self.risk_ratio),
            "no_debt": not self.has_debt,
            "is_liquidatable": self.is_liquidatable,
            "distance_to_liquidation_pct": to_float(self.distance_to_liquidation),
            "estimated_reward_usd": to_float(self.estimated_reward_usd, USD_SCALING),
        }


@dataclass(frozen=True)
class PoolMetrics:
    pool_id: str
    utilization: int
    borrow_apr: int
    supply_apr: int

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "utilization": to_float(self.utilization),
            "borrow_apr": to_float(self.borrow_apr),
            "supply_apr": to_float(self.supply_apr),
        }


@dataclass(frozen=True)
class RiskDistributionBucket:
    label: str
    min_ratio: int
    max_ratio: int | None
    # None for the open-ended top bucket
    count: int
    total_debt_usd: int
    color: str
    is_liquidatable: bool = False

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "count": self.count,
            "total_debt_usd": to_float(self.total_debt_usd, USD_SCALING),
            "color": self.color,
            "is_liquidatable": self.is_liquidatable,
        }


@dataclass(frozen=True)
class StressPoint:
    """Aggregate liquidation exposure at one hypothetical price shock."""
    shock_pct: int
    liquidatable_count: int
    debt_at_risk_usd: int


@dataclass(frozen=True)
class CliffReport:
    shock_pct: int
    debt_multiplier: int
    # FLOAT_SCALING
    debt_before_usd: int = 0
    debt_after_usd: int = 0

    def to_dict(self) -> dict:
        return {
            "shock_pct": self.shock_pct,
            "debt_multiplier": to_float(self.debt_multiplier),
        }


@dataclass(frozen=True)
class MarketSnapshot:
    """A single atomic poll of pools, positions and prices."""
    as_of_timestamp: int
    pools: tuple[MarginPool, ...] = ()
    positions: tuple[MarginPosition, ...] = ()
    supplies: tuple[Position, ...] = ()
    prices: tuple[PriceQuote, ...] = ()

    def price_map(self) -> dict[str, PriceQuote]:
        return {quote.asset_id: quote for quote in self.prices}
