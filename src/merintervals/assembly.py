"""Linear predictor assembler.

Turns prediction data into numeric design arrays once, then combines
them with coefficient draws chunk by chunk:

    η[i, s] = X[i] · β⁽ˢ⁾ + Σ_k Z_k[i] · u_k⁽ˢ⁾[g_k(i)]

where ``g_k(i)`` is the level of row *i* in grouping factor *k*.

New-level policy
~~~~~~~~~~~~~~~~
When ``g_k(i)`` was not seen during fitting (or the grouping column is
absent from the prediction data), factor *k* contributes nothing to
row *i*: the random effect is taken to be zero, its population mean.
The row's interval then reflects fixed-effect uncertainty (and
residual noise) only, so it is narrower than the interval of a row
from a known group.  This is the intended behaviour, not an error; the
affected rows are counted and logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._backends import BackendProtocol
from .exceptions import MissingCovariate
from .introspect import INTERCEPT_NAMES, INTERCEPT_TERM, MixedModelSummary
from .sampling import CoefficientBatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PredictionDesign:
    """Numeric design of the prediction data.

    Attributes:
        X: Fixed-effect design ``(n, p)``.
        Z: Per-factor random-effect designs ``(n, q_k)``.
        level_idx: Per-factor level positions ``(n,)``, ``-1`` where
            the level is unseen.
        factor_names: Names of the grouping factors, aligned with *Z*.
        index: Index of the prediction data, for labelling output.
    """

    X: np.ndarray
    Z: tuple[np.ndarray, ...]
    level_idx: tuple[np.ndarray, ...]
    factor_names: tuple[str, ...]
    index: pd.Index

    @property
    def n_obs(self) -> int:
        return int(self.X.shape[0])

    @property
    def new_level_counts(self) -> dict[str, int]:
        """Number of rows falling back to a zero random effect, per factor."""
        return {
            name: int(np.count_nonzero(idx < 0))
            for name, idx in zip(self.factor_names, self.level_idx)
        }

    def chunk(self, start: int, stop: int) -> PredictionDesign:
        """Rows ``start:stop`` of the design."""
        return PredictionDesign(
            X=self.X[start:stop],
            Z=tuple(z[start:stop] for z in self.Z),
            level_idx=tuple(i[start:stop] for i in self.level_idx),
            factor_names=self.factor_names,
            index=self.index[start:stop],
        )


def _numeric_column(newdata: pd.DataFrame, name: str) -> np.ndarray:
    try:
        values = pd.to_numeric(newdata[name], errors="raise").to_numpy(dtype=np.float64)
    except (TypeError, ValueError) as exc:
        msg = f"Column '{name}' of newdata must be numeric: {exc}"
        raise ValueError(msg) from exc
    if not np.all(np.isfinite(values)):
        msg = f"Column '{name}' of newdata contains NaN or infinite values."
        raise ValueError(msg)
    return values


def required_columns(summary: MixedModelSummary) -> list[str]:
    """Covariate columns the prediction data must provide.

    Intercept columns are filled automatically and grouping-factor
    membership columns are optional, so neither is listed.
    """
    needed = [n for n in summary.fixed_names if n not in INTERCEPT_NAMES]
    for f in summary.factors:
        needed.extend(t for t in f.terms if t not in INTERCEPT_NAMES)
    return list(dict.fromkeys(needed))


def check_covariates(summary: MixedModelSummary, newdata: pd.DataFrame) -> None:
    """Raise :class:`MissingCovariate` listing every absent column."""
    missing = [c for c in required_columns(summary) if c not in newdata.columns]
    if missing:
        msg = (
            f"newdata is missing column(s) required by the model: {missing}. "
            f"Available columns: {list(newdata.columns)}."
        )
        raise MissingCovariate(msg)


def build_design(summary: MixedModelSummary, newdata: pd.DataFrame) -> PredictionDesign:
    """Build the numeric design for *newdata*.

    Args:
        summary: Model whose fixed-effect names and random-effect terms
            define the columns.
        newdata: Prediction rows.

    Returns:
        A :class:`PredictionDesign` aligned with *newdata*.

    Raises:
        MissingCovariate: If a fixed-effect or random-slope column is
            absent.
        ValueError: If a required column is non-numeric or non-finite.
    """
    check_covariates(summary, newdata)
    n = len(newdata)

    X = np.empty((n, summary.p), dtype=np.float64)
    for j, name in enumerate(summary.fixed_names):
        if name in INTERCEPT_NAMES and name not in newdata.columns:
            X[:, j] = 1.0
        else:
            X[:, j] = _numeric_column(newdata, name)

    Z_list: list[np.ndarray] = []
    idx_list: list[np.ndarray] = []
    for f in summary.factors:
        Z_k = np.empty((n, f.q), dtype=np.float64)
        for j, term in enumerate(f.terms):
            if term == INTERCEPT_TERM or (
                term in INTERCEPT_NAMES and term not in newdata.columns
            ):
                Z_k[:, j] = 1.0
            else:
                Z_k[:, j] = _numeric_column(newdata, term)
        if f.name in newdata.columns:
            idx = f.level_index(newdata[f.name].to_numpy())
        else:
            logger.debug(
                "Grouping column '%s' absent from newdata; all rows treated "
                "as new levels.",
                f.name,
            )
            idx = np.full(n, -1, dtype=np.intp)
        Z_list.append(Z_k)
        idx_list.append(idx)

    design = PredictionDesign(
        X=X,
        Z=tuple(Z_list),
        level_idx=tuple(idx_list),
        factor_names=tuple(summary.factor_names),
        index=newdata.index,
    )
    for name, count in design.new_level_counts.items():
        if count:
            logger.info(
                "%d of %d rows have a level of '%s' unseen during fitting; "
                "their random effect is set to zero (fixed-effects-only "
                "prediction for that factor).",
                count,
                n,
                name,
            )
    return design


def linear_predictor(
    design: PredictionDesign,
    batch: CoefficientBatch,
    backend: BackendProtocol,
) -> np.ndarray:
    """Full linear predictor ``(n, S)`` for a design chunk and a batch of draws."""
    eta = backend.fixed_part(design.X, batch.fixed)
    for Z_k, idx_k, u_k in zip(design.Z, design.level_idx, batch.random):
        eta += backend.random_part(Z_k, idx_k, u_k)
    return eta


def linear_predictor_components(
    design: PredictionDesign,
    batch: CoefficientBatch,
    backend: BackendProtocol,
) -> tuple[np.ndarray, list[np.ndarray]]:
    """Fixed part ``(n, S)`` and one random part ``(n, S)`` per factor."""
    fixed = backend.fixed_part(design.X, batch.fixed)
    random = [
        backend.random_part(Z_k, idx_k, u_k)
        for Z_k, idx_k, u_k in zip(design.Z, design.level_idx, batch.random)
    ]
    return fixed, random


__all__ = [
    "PredictionDesign",
    "build_design",
    "check_covariates",
    "linear_predictor",
    "linear_predictor_components",
    "required_columns",
]
