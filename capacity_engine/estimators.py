"""Statistical helpers for the Recruiter Capacity Engine."""

from typing import Iterable, Optional

import numpy as np


def median(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return float(np.median(values))


def shrink(raw: float, n: float, k: float = 5.0) -> float:
    """Bayesian shrinkage of a residual toward zero: raw x n / (n + k)."""
    if k <= 0:
        raise ValueError(f"shrinkage constant k must be positive, got {k}")
    if n < 0:
        raise ValueError(f"sample size must be non-negative, got {n}")
    return raw * n / (n + k)


def shrinkage_factor(n: float, k: float = 5.0) -> float:
    return shrink(1.0, n, k)


def shrink_rate(observed: float, prior: float, n: float, prior_weight: float = 5.0) -> float:
    """Weighted average of an observed rate and its prior; the prior when n is 0."""
    if n <= 0:
        return prior
    return (n * observed + prior_weight * prior) / (n + prior_weight)
