"""Helpers for preparing prediction data from a model frame.

Building ``newdata`` by hand is tedious when a model has many
covariates.  These helpers derive prediction rows from the data the
model was fitted on (``MixedModelSummary.frame``, populated
automatically for statsmodels models):

* :func:`random_obs` — one row drawn at random from the model frame.
* :func:`average_obs` — a single "typical" row: numeric columns at
  their mean, categorical columns at their mode, grouping columns at
  the level with the median random intercept.  Optionally conditioned
  on a subset of the data.
* :func:`wiggle_obs` — copies of each row with one variable set to a
  range of values, for looking at how predictions move along it.
* :func:`find_re_quantile` — the group level sitting at a given
  quantile of a random effect.

The remaining functions are the building blocks they share.
"""

from __future__ import annotations

import logging
import re
import warnings
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
import pandas as pd

from ._typing import RandomState
from .introspect import INTERCEPT_TERM, MixedModelSummary, extract_model

logger = logging.getLogger(__name__)

_TIE = "."
"""Placeholder returned by :func:`collapse_frame` when the mode is tied."""

_WRAPPED_NAME = re.compile(r"^(?:factor|C)\((.*)\)$")

_SMALL_SUBSET = 20
_MIN_SUBSET = 3


# ------------------------------------------------------------------ #
# Building blocks
# ------------------------------------------------------------------ #


def sanitize_names(data: pd.DataFrame) -> pd.DataFrame:
    """Strip ``factor(...)`` / ``C(...)`` wrappers from column names.

    The index is reset to a default ``RangeIndex``.
    """
    out = data.rename(
        columns=lambda c: _WRAPPED_NAME.sub(r"\1", c) if isinstance(c, str) else c
    )
    return out.reset_index(drop=True)


def strip_attributes(data: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of *data* with ``DataFrame.attrs`` emptied."""
    out = data.copy()
    out.attrs = {}
    return out


def super_factor(x: Any, full_levels: Any) -> pd.Categorical:
    """Categorical of *x* whose categories include every level in *full_levels*.

    Values of *x* are compared as strings.  Values absent from
    *full_levels* are appended as extra categories rather than
    discarded.
    """
    if isinstance(full_levels, pd.Categorical | pd.CategoricalIndex):
        full_levels = full_levels.categories
    elif isinstance(full_levels, pd.Series) and isinstance(
        full_levels.dtype, pd.CategoricalDtype
    ):
        full_levels = full_levels.cat.categories
    levels = list(dict.fromkeys(str(v) for v in pd.Series(full_levels).dropna()))
    values = pd.Series(x).astype(str)
    extra = [v for v in dict.fromkeys(values) if v not in levels]
    return pd.Categorical(values, categories=levels + extra)


def shuffle(data: pd.DataFrame, random_state: RandomState = None) -> pd.DataFrame:
    """Rows of *data* in random order."""
    rng = np.random.default_rng(random_state)
    return data.iloc[rng.permutation(len(data))]


def _mode(values: pd.Series) -> Any:
    counts = values.astype(str).value_counts()
    if counts.empty:
        return _TIE
    top = counts[counts == counts.iloc[0]]
    return top.index[0] if len(top) == 1 else _TIE


def collapse_frame(data: pd.DataFrame) -> pd.DataFrame:
    """Summarise *data* as one row.

    Numeric columns collapse to their mean; every other column to its
    most frequent value (as a string), or ``"."`` when the mode is
    tied.  Column order is preserved.
    """
    row: dict[str, Any] = {}
    for col in data.columns:
        s = data[col]
        if pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s):
            row[col] = float(s.mean())
        else:
            row[col] = _mode(s)
    return pd.DataFrame([row], columns=data.columns)


def subset_list(data: pd.DataFrame, conditions: Mapping[str, Any]) -> pd.DataFrame:
    """Rows of *data* matching every ``column == value`` condition.

    Values are compared as strings, so ``{"Subject": 308}`` matches a
    column holding ``"308"``.

    Raises:
        KeyError: If a condition names a column *data* lacks.
    """
    out = data
    for col, value in conditions.items():
        if col not in out.columns:
            raise KeyError(col)
        out = out[out[col].astype(str) == str(value)]
    return out


def _summary_with_frame(model: Any) -> MixedModelSummary:
    summary = extract_model(model)
    if summary.frame is None:
        msg = (
            "The model carries no data frame; pass a fitted statsmodels "
            "model or a MixedModelSummary built with frame=..."
        )
        raise ValueError(msg)
    return summary


def _with_full_levels(out: pd.DataFrame, frame: pd.DataFrame) -> pd.DataFrame:
    for col in out.columns:
        if col in frame.columns and not pd.api.types.is_numeric_dtype(out[col]):
            out[col] = super_factor(out[col], frame[col].unique())
    return strip_attributes(out)


# ------------------------------------------------------------------ #
# Observation builders
# ------------------------------------------------------------------ #


def find_re_quantile(
    model: Any,
    quantile: float | Sequence[float] | np.ndarray,
    group: str,
    eff: str = INTERCEPT_TERM,
) -> Any:
    """Group level(s) at the given quantile(s) of a random effect.

    Levels are ordered by their conditional mode for term *eff*, from
    lowest to highest; quantile ``q`` selects position
    ``floor(q * G)``, clipped to the last level.

    Args:
        model: Fitted model or :class:`MixedModelSummary`.
        quantile: A value in ``[0, 1]`` or an array of them.
        group: Grouping factor name.
        eff: Random-effect term, the intercept by default.

    Returns:
        One level label for a scalar *quantile*, otherwise a list.

    Raises:
        KeyError: If *group* or *eff* does not exist.
        ValueError: If a quantile lies outside ``[0, 1]``.
    """
    summary = extract_model(model)
    ranef = summary.ranef(group)
    if eff not in ranef.columns:
        raise KeyError(eff)

    q = np.asarray(quantile, dtype=np.float64)
    if np.any((q < 0.0) | (q > 1.0)) or not np.all(np.isfinite(q)):
        msg = f"quantile must lie in [0, 1], got {quantile!r}."
        raise ValueError(msg)

    ordered = ranef[eff].sort_values(kind="stable")
    n_levels = len(ordered)
    pos = np.clip(np.floor(q * n_levels).astype(np.intp), 0, n_levels - 1)
    labels = ordered.index.to_numpy()[pos]
    if q.ndim == 0:
        return labels.item() if hasattr(labels, "item") else labels
    return labels.tolist()


def random_obs(model: Any, random_state: RandomState = None) -> pd.DataFrame:
    """One randomly chosen row of the model frame.

    Non-numeric columns are returned as categoricals carrying every
    level of the full frame.
    """
    summary = _summary_with_frame(model)
    frame = summary.frame
    rng = np.random.default_rng(random_state)
    out = frame.iloc[[int(rng.integers(len(frame)))]].copy()
    return _with_full_levels(out, frame)


def average_obs(
    model: Any,
    var_list: Mapping[str, Any] | None = None,
) -> pd.DataFrame:
    """A single row describing the average observation.

    Numeric columns take their mean and categorical columns their mode
    (see :func:`collapse_frame`).  Each grouping column is set to the
    level with the median random intercept.

    Args:
        model: Fitted model or :class:`MixedModelSummary` with a frame.
        var_list: Optional ``{column: value}`` conditions; the average
            is taken over the matching rows only.

    Warns:
        UserWarning: When the conditioned subset has fewer than 20
            rows, or fewer than 3 (the whole frame is used instead).
    """
    summary = _summary_with_frame(model)
    frame = summary.frame
    data = frame
    if var_list:
        data = subset_list(frame, var_list)
        n = len(data)
        if _MIN_SUBSET <= n < _SMALL_SUBSET:
            warnings.warn(
                f"Subset has {n} rows (fewer than {_SMALL_SUBSET}); averages "
                "may be unreliable.",
                UserWarning,
                stacklevel=2,
            )
        elif n < _MIN_SUBSET:
            warnings.warn(
                f"Subset has {n} rows (fewer than {_MIN_SUBSET}); computing "
                "the average over the whole model frame instead.",
                UserWarning,
                stacklevel=2,
            )
            data = frame

    out = collapse_frame(data)
    for factor in summary.factors:
        label = find_re_quantile(summary, 0.5, factor.name, eff=factor.terms[0])
        out[factor.name] = str(label)
    logger.debug("Average observation built from %d rows", len(data))
    return _with_full_levels(out, frame)


def wiggle_obs(data: pd.DataFrame, var: str, values: Sequence[Any]) -> pd.DataFrame:
    """Copy every row of *data* once per entry of *values*.

    Row ``i`` of *data* becomes ``len(values)`` consecutive rows whose
    *var* column runs through *values*; all other columns are unchanged.
    Column names are passed through :func:`sanitize_names`.
    """
    values = list(values)
    if not values:
        msg = "values must contain at least one entry."
        raise ValueError(msg)
    out = data.iloc[np.repeat(np.arange(len(data)), len(values))].copy()
    out[var] = [v for _ in range(len(data)) for v in values]
    return sanitize_names(out)


__all__ = [
    "average_obs",
    "collapse_frame",
    "find_re_quantile",
    "random_obs",
    "sanitize_names",
    "shuffle",
    "strip_attributes",
    "subset_list",
    "super_factor",
    "wiggle_obs",
]
