"""
Per-position liquidation risk for margin managers.

    collateral_usd = sum(amount_i / 10^decimals_i * price_i)   (base + quote)
    debt_usd       = sum(debt_i   / 10^decimals_i * price_i)
    risk_ratio     = collateral_usd / debt_usd, or SENTINEL_SAFE_RATIO if no debt
    liquidatable   = risk_ratio <= liquidation_threshold
    distance       = (risk_ratio - threshold) / threshold * 100

A position whose assets are not all priced (missing, stale or non-positive
quote) is reported as Unevaluable. Treating a missing price as zero would
make the position look either riskless or insolvent depending on which
side the asset sits on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum

from config.params import FLOAT_SCALING, RISK, SENTINEL_SAFE_RATIO, USD_SCALING, RiskParams
from models.fixed_point import check_u64, div, mul, mul_div, signed_mul_div, to_fixed
from models.results import (
    CoreError,
    Evaluable,
    EvaluationResult,
    InvalidSnapshotError,
    MissingPriceError,
    Unevaluable,
)
from models.types import AssetAmount, AssetValuation, AtRiskPosition, MarginPosition, PriceQuote

LOGGER = logging.getLogger(__name__)

PERCENT = 100 * FLOAT_SCALING


class RiskLevel(str, Enum):
    LIQUIDATABLE = "liquidatable"
    CRITICAL = "critical"
    WARNING = "warning"
    WATCH = "watch"


def asset_value_usd(holding: AssetAmount, quote: PriceQuote) -> int:
    """USD value of a holding at USD_SCALING, floored."""
    amount = check_u64(holding.amount, f"{holding.asset_id} amount")
    price = check_u64(quote.usd_price, f"{quote.asset_id} price")
    denom = 10 ** (holding.decimals + quote.price_decimals)
    gross = mul_div(amount, price, 1)
    return mul_div(gross, USD_SCALING, denom)


class RiskEngine:
    """Evaluates margin positions against a price snapshot."""

    def __init__(self, params: RiskParams = RISK):
        self.params = params

    def _quote(self, asset_id: str, prices: Mapping[str, PriceQuote],
               as_of: int | None) -> PriceQuote:
        quote = prices.get(asset_id)
        if quote is None or quote.usd_price <= 0:
            raise MissingPriceError(asset_id)
        if as_of is not None and as_of - quote.as_of_timestamp > self.params.max_price_age_seconds:
            raise MissingPriceError(asset_id, stale=True)
        return quote

    def _value(self, holdings: Iterable[AssetAmount], prices: Mapping[str, PriceQuote],
               as_of: int | None,
               price_multipliers: Mapping[str, int] | None) -> tuple[AssetValuation, ...]:
        valued = []
        for holding in holdings:
            quote = self._quote(holding.asset_id, prices, as_of)
            usd = asset_value_usd(holding, quote)
            if price_multipliers and holding.asset_id in price_multipliers:
                usd = mul(usd, price_multipliers[holding.asset_id])
            valued.append(AssetValuation(holding.asset_id, holding.amount,
                                         holding.decimals, usd))
        return tuple(valued)

    def assess(self, position: MarginPosition, prices: Mapping[str, PriceQuote],
               as_of: int | None = None,
               price_multipliers: Mapping[str, int] | None = None) -> AtRiskPosition:
        """
        Evaluate one position, raising CoreError on failure.

        price_multipliers scales the USD value of the named assets
        (FLOAT_SCALING == unchanged) and is how stress shocks are applied.
        """
        threshold = check_u64(position.liquidation_threshold, "liquidation_threshold")
        if threshold == 0:
            raise InvalidSnapshotError(f"{position.manager_id}: liquidation_threshold is zero")

        collateral = self._value(position.collateral, prices, as_of, price_multipliers)
        debt = self._value(position.debt, prices, as_of, price_multipliers)
        collateral_usd = sum(v.usd_value for v in collateral)
        debt_usd = sum(v.usd_value for v in debt)

        risk_ratio = div(collateral_usd, debt_usd) if debt_usd > 0 else SENTINEL_SAFE_RATIO
        is_liquidatable = debt_usd > 0 and risk_ratio <= threshold
        distance = signed_mul_div(risk_ratio - threshold, PERCENT, threshold)
        reward = mul(debt_usd, position.reward_fraction) if is_liquidatable else 0

        return AtRiskPosition(
            manager_id=position.manager_id,
            base_asset_id=position.base_asset_id,
            quote_asset_id=position.quote_asset_id,
            collateral=collateral,
            debt=debt,
            collateral_usd=collateral_usd,
            debt_usd=debt_usd,
            liquidation_threshold=threshold,
            risk_ratio=risk_ratio,
            is_liquidatable=is_liquidatable,
            distance_to_liquidation=distance,
            estimated_reward_usd=reward,
            reward_fraction=position.reward_fraction,
        )

    def evaluate(self, position: MarginPosition, prices: Mapping[str, PriceQuote],
                 as_of: int | None = None,
                 price_multipliers: Mapping[str, int] | None = None) -> EvaluationResult:
        """Evaluate one position; failures come back as Unevaluable."""
        try:
            return Evaluable(self.assess(position, prices, as_of, price_multipliers))
        except CoreError as exc:
            LOGGER.debug("Position %s unevaluable: %s", position.manager_id, exc)
            return Unevaluable(manager_id=position.manager_id, reason=exc.kind,
                               detail=str(exc))

    def evaluate_many(self, positions: Iterable[MarginPosition],
                      prices: Mapping[str, PriceQuote],
                      as_of: int | None = None) -> list[EvaluationResult]:
        """Evaluate a batch; one bad position never fails the others."""
        return [self.evaluate(p, prices, as_of) for p in positions]

    def risk_level(self, position: AtRiskPosition) -> RiskLevel:
        if position.is_liquidatable:
            return RiskLevel.LIQUIDATABLE
        if position.distance_to_liquidation < to_fixed(self.params.critical_distance_pct):
            return RiskLevel.CRITICAL
        if position.distance_to_liquidation < to_fixed(self.params.warning_distance_pct):
            return RiskLevel.WARNING
        return RiskLevel.WATCH

    def price_move_to_liquidation(self, position: AtRiskPosition) -> int | None:
        """
        Signed % move in the base asset price that brings the position to its
        threshold, at FLOAT_SCALING.

        Base-denominated debt moves with the price too:
            move = (threshold * debt - collateral)
                   / (base_collateral - threshold * base_debt)
        None when already liquidatable, debt-free, or price-insensitive.
        """
        if position.is_liquidatable or not position.has_debt:
            return None
        threshold = position.liquidation_threshold
        net_exposure = (position.collateral_usd_of(position.base_asset_id)
                        - mul(threshold, position.debt_usd_of(position.base_asset_id)))
        if abs(net_exposure) <= to_fixed(self.params.min_net_exposure_usd, USD_SCALING):
            return None
        target_collateral = mul(threshold, position.debt_usd)
        change_needed = target_collateral - position.collateral_usd
        return signed_mul_div(change_needed, PERCENT, net_exposure)
