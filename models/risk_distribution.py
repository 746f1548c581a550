"""
Risk-ratio histogram over evaluated margin positions.

Boundaries b_0 < b_1 < ... < b_k (FLOAT_SCALING risk ratios) define k + 1
half-open buckets:

    [0, b_0), [b_0, b_1), ..., [b_k, inf)

Liquidatable positions always land in the lowest bucket, whatever their
ratio. Every bucket is returned even when empty, so the chart keeps its
shape from one refresh to the next.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from config.params import DISTRIBUTION, DistributionParams
from models.fixed_point import mul, to_fixed, to_float
from models.types import AtRiskPosition, RiskDistributionBucket

DEFAULT_THRESHOLD = 1_050_000_000
# Used when no position carries a threshold to anchor the default buckets

MAX_BOUNDARY = int(np.iinfo(np.int64).max)


def _fmt(ratio: int) -> str:
    return f"{to_float(ratio):.2f}"


def default_labels(boundaries: Sequence[int]) -> list[str]:
    """'< b0', 'b0–b1', ..., 'bk+' with two decimals."""
    labels = [f"< {_fmt(boundaries[0])}"]
    for lo, hi in zip(boundaries, boundaries[1:]):
        labels.append(f"{_fmt(lo)}–{_fmt(hi)}")
    labels.append(f"{_fmt(boundaries[-1])}+")
    return labels


class RiskDistributionAggregator:
    """Buckets RiskEngine outputs by risk ratio."""

    def __init__(self, params: DistributionParams = DISTRIBUTION):
        self.params = params

    def default_boundaries(self, threshold: int) -> tuple[int, ...]:
        """Boundaries at threshold x boundary_multipliers."""
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        return tuple(mul(threshold, to_fixed(m)) for m in self.params.boundary_multipliers)

    def bucket(self, positions: Sequence[AtRiskPosition], boundaries: Sequence[int],
               labels: Sequence[str] | None = None,
               colors: Sequence[str] | None = None) -> list[RiskDistributionBucket]:
        """Histogram of count and debt per bucket; counts always sum to len(positions)."""
        bounds = [int(b) for b in boundaries]
        if not bounds:
            raise ValueError("at least one bucket boundary is required")
        if bounds[0] < 0 or any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError(f"bucket boundaries must be non-negative and strictly increasing: {bounds}")
        if bounds[-1] > MAX_BOUNDARY:
            raise ValueError(
                f"bucket boundary {bounds[-1]} exceeds the int64 range ({MAX_BOUNDARY})"
            )

        n_buckets = len(bounds) + 1
        labels = list(labels) if labels is not None else default_labels(bounds)
        if len(labels) != n_buckets:
            raise ValueError(f"expected {n_buckets} labels, got {len(labels)}")
        colors = list(colors) if colors is not None else list(self.params.colors)
        if not colors:
            raise ValueError("at least one bucket color is required")

        counts = [0] * n_buckets
        debts = [0] * n_buckets
        if positions:
            # Anything at or above the top boundary lands in the top bucket,
            # so clamping keeps huge sentinel ratios inside int64.
            top = bounds[-1]
            ratios = np.array([min(p.risk_ratio, top) for p in positions], dtype=np.int64)
            indices = np.searchsorted(np.array(bounds, dtype=np.int64), ratios, side="right")
            for position, idx in zip(positions, indices):
                idx = 0 if position.is_liquidatable else int(idx)
                counts[idx] += 1
                debts[idx] += position.debt_usd

        buckets = []
        for i in range(n_buckets):
            buckets.append(RiskDistributionBucket(
                label=labels[i],
                min_ratio=0 if i == 0 else bounds[i - 1],
                max_ratio=bounds[i] if i < len(bounds) else None,
                count=counts[i],
                total_debt_usd=debts[i],
                color=colors[min(i, len(colors) - 1)],
                is_liquidatable=i == 0,
            ))
        return buckets

    def distribution(self, positions: Sequence[AtRiskPosition],
                     threshold: int | None = None) -> list[RiskDistributionBucket]:
        """Histogram with boundaries relative to the liquidation threshold."""
        if threshold is None:
            threshold = positions[0].liquidation_threshold if positions else DEFAULT_THRESHOLD
        return self.bucket(positions, self.default_boundaries(threshold))

