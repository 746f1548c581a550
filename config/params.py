"""
Fixed-point scales and risk-engine parameters for the margin lending pools.

Every snapshot field has exactly one scale:
- Token amounts (supply, borrow, shares, caps, collateral, debt): native
  smallest units of the asset, u64.
- Rates, fractions, utilization and risk ratios: FLOAT_SCALING (10^9),
  i.e. 1_000_000_000 == 100% / 1.0x.
- USD values produced by the risk engine: USD_SCALING (10^9).

Defaults can be overridden through MARGIN_RISK_* environment variables,
see load_params().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

FLOAT_SCALING = 1_000_000_000
# Source: deepbook margin_constants / math::FLOAT_SCALING
USD_SCALING = 1_000_000_000
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

SENTINEL_SAFE_RATIO = 999 * FLOAT_SCALING
# Risk ratio reported for positions with no debt


@dataclass(frozen=True)
class RiskParams:
    """Per-position risk evaluation parameters."""
    max_price_age_seconds: int = 60
    # Prices older than this relative to the snapshot time are stale
    critical_distance_pct: float = 5.0
    # Distance to liquidation below which a position is CRITICAL
    warning_distance_pct: float = 15.0
    # Distance to liquidation below which a position is WARNING
    min_net_exposure_usd: float = 0.01
    # Net base exposure below this cannot move the risk ratio


@dataclass(frozen=True)
class StressParams:
    """Price-shock sweep used for cliff detection."""
    shock_start_pct: int = 0
    shock_end_pct: int = -50
    shock_step_pct: int = -2
    cliff_min_multiplier: float = 2.0
    # Step-to-step debt-at-risk jump that counts as a cascade


@dataclass(frozen=True)
class LiquidityParams:
    """Utilization bands for the withdrawal liquidity check (percent)."""
    moderate_utilization_pct: float = 50.0
    high_utilization_pct: float = 75.0
    critical_utilization_pct: float = 90.0


@dataclass(frozen=True)
class DistributionParams:
    """Threshold-relative histogram boundaries and colors."""
    boundary_multipliers: tuple[float, ...] = (1.0, 1.05, 1.15, 1.4)
    colors: tuple[str, ...] = (
        "#f43f5e",  # liquidatable
        "#fb923c",  # critical
        "#fbbf24",  # warning
        "#2dd4bf",  # safe
        "#22d3ee",  # very safe
    )


@dataclass(frozen=True)
class OutlookParams:
    """Pool verdict cut-offs on the price move to first liquidation (percent)."""
    fragile_move_pct: float = 5.0
    watch_move_pct: float = 15.0
    within_buffer_pct: float = 10.0
    # Non-liquidatable positions this close (distance %) count as "near"


@dataclass(frozen=True)
class YieldCurveParams:
    """Sampling of the interest-rate curve for charting."""
    steps: int = 16


def _coerce(raw: str, current):
    if isinstance(current, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return current


def _apply_env(prefix: str, params):
    """Return a copy of params with MARGIN_RISK_<PREFIX>_<FIELD> overrides."""
    overrides = {}
    for f in fields(params):
        current = getattr(params, f.name)
        if isinstance(current, tuple):
            continue
        name = f"MARGIN_RISK_{prefix}_{f.name}".upper()
        raw = os.getenv(name)
        if raw is None:
            continue
        try:
            overrides[f.name] = _coerce(raw, current)
        except ValueError:
            LOGGER.warning("Ignoring malformed %s=%r", name, raw)
    if not overrides:
        return params
    return replace(params, **overrides)


def load_params(env_file: str | Path | None = None) -> dict:
    """
    Load parameter groups with environment overrides.

    Reads the project .env (or env_file) first, then applies variables of
    the form MARGIN_RISK_<GROUP>_<FIELD>, e.g. MARGIN_RISK_STRESS_SHOCK_STEP_PCT.
    """
    if env_file is None:
        env_file = Path(__file__).resolve().parent.parent / ".env"
    load_dotenv(env_file)

    params = {
        "risk": _apply_env("risk", RiskParams()),
        "stress": _apply_env("stress", StressParams()),
        "liquidity": _apply_env("liquidity", LiquidityParams()),
        "distribution": DistributionParams(),
        "outlook": _apply_env("outlook", OutlookParams()),
        "yield_curve": _apply_env("yield_curve", YieldCurveParams()),
    }
    stress = params["stress"]
    if stress.shock_step_pct == 0:
        LOGGER.warning("MARGIN_RISK_STRESS_SHOCK_STEP_PCT=0 is invalid, using default")
        params["stress"] = replace(stress, shock_step_pct=StressParams.shock_step_pct)
    return params


# Convenient default instances (used throughout codebase)
RISK = RiskParams()
STRESS = StressParams()
LIQUIDITY = LiquidityParams()
DISTRIBUTION = DistributionParams()
OUTLOOK = OutlookParams()
YIELD_CURVE = YieldCurveParams()
