"""Interval summarizer: reduce simulated draws to fit / lower / upper.

For each observation (row of the draw matrix) the point estimate is
the mean or median of its ``n_sims`` draws and the bounds are the
``(1 - level) / 2`` and ``1 - (1 - level) / 2`` sample quantiles.

Quantiles use :func:`numpy.quantile`; the default ``"linear"`` method
interpolates linearly between order statistics (Hyndman & Fan type 7,
the default of R's ``quantile``).  Any method name accepted by NumPy
may be passed instead.

With ``stat="mean"`` the mean is clamped into ``[lower, upper]``: on a
skewed row it can fall outside a narrow central interval.

A single draw per observation is a valid (degenerate) input: every
quantile of one value is that value, so ``lower == fit == upper``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .exceptions import UnsupportedOption

POINT_STATISTICS: frozenset[str] = frozenset({"mean", "median"})

QUANTILE_METHODS: frozenset[str] = frozenset(
    {
        "inverted_cdf",
        "averaged_inverted_cdf",
        "closest_observation",
        "interpolated_inverted_cdf",
        "hazen",
        "weibull",
        "linear",
        "median_unbiased",
        "normal_unbiased",
        "lower",
        "higher",
        "midpoint",
        "nearest",
    }
)


@dataclass(frozen=True)
class IntervalBounds:
    """Vectorised summary of a draw matrix: three ``(n,)`` arrays."""

    fit: np.ndarray
    lower: np.ndarray
    upper: np.ndarray


def validate_level(level: float) -> float:
    """Return *level* as a float, rejecting values outside ``(0, 1)``."""
    try:
        level = float(level)
    except (TypeError, ValueError):
        msg = f"level must be a number in (0, 1), got {level!r}."
        raise UnsupportedOption(msg) from None
    if not 0.0 < level < 1.0:
        msg = f"level must lie strictly between 0 and 1, got {level}."
        raise UnsupportedOption(msg)
    return level


def validate_stat(stat: str) -> str:
    key = str(stat).strip().lower()
    if key not in POINT_STATISTICS:
        msg = f"Unknown point statistic {stat!r}. Choose from: {sorted(POINT_STATISTICS)}."
        raise UnsupportedOption(msg)
    return key


def validate_quantile_method(method: str) -> str:
    if method not in QUANTILE_METHODS:
        msg = (
            f"Unknown quantile method {method!r}. Choose from: "
            f"{sorted(QUANTILE_METHODS)}."
        )
        raise UnsupportedOption(msg)
    return method


def quantile_probs(level: float) -> tuple[float, float]:
    """Lower and upper tail probabilities of a central *level* interval."""
    alpha = (1.0 - level) / 2.0
    return alpha, 1.0 - alpha


def summarize_draws(
    draws: np.ndarray,
    level: float = 0.95,
    stat: str = "median",
    *,
    quantile_method: str = "linear",
) -> IntervalBounds:
    """Summarise a draw matrix row by row.

    Args:
        draws: ``(n_obs, n_sims)`` simulated values.  A 1-D array is
            treated as the draws of a single observation.
        level: Central interval coverage in ``(0, 1)``.
        stat: ``"mean"`` or ``"median"``.
        quantile_method: NumPy quantile method (default ``"linear"``).

    Returns:
        :class:`IntervalBounds` with ``(n_obs,)`` arrays.

    Raises:
        UnsupportedOption: On an invalid *level*, *stat* or method,
            or when *draws* has no columns.
    """
    level = validate_level(level)
    stat = validate_stat(stat)
    quantile_method = validate_quantile_method(quantile_method)

    draws = np.asarray(draws, dtype=np.float64)
    if draws.ndim == 1:
        draws = draws.reshape(1, -1)
    if draws.shape[1] == 0:
        msg = "Cannot summarise an empty draw matrix (n_sims must be >= 1)."
        raise UnsupportedOption(msg)

    lo, hi = quantile_probs(level)
    if stat == "median":
        q = np.quantile(draws, [lo, 0.5, hi], axis=1, method=quantile_method)
        lower, fit, upper = q[0], q[1], q[2]
    else:
        q = np.quantile(draws, [lo, hi], axis=1, method=quantile_method)
        lower, upper = q[0], q[1]
        fit = np.clip(draws.mean(axis=1), lower, upper)
    return IntervalBounds(fit=fit, lower=lower, upper=upper)


__all__ = [
    "POINT_STATISTICS",
    "QUANTILE_METHODS",
    "IntervalBounds",
    "quantile_probs",
    "summarize_draws",
    "validate_level",
    "validate_quantile_method",
    "validate_stat",
]
