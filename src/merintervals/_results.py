"""Result objects returned by :func:`~merintervals.predict_interval`.

Both classes are frozen dataclasses.  Fields are reachable as
attributes (``result.fit``) or by key (``result["fit"]``,
``result.get("fit")``, ``"fit" in result``), and :meth:`to_dict`
gives a JSON-ready snapshot in which arrays, indexes and frames have
become lists.  :meth:`PredictionIntervalResult.to_frame` is the usual
way to look at the intervals next to the prediction data.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from ._context import SimulationContext


def _to_native(value: Any) -> Any:
    """Replace NumPy and pandas containers and scalars with builtins."""
    if isinstance(value, pd.DataFrame):
        return {col: _to_native(value[col].to_numpy()) for col in value.columns}
    if isinstance(value, (np.ndarray, pd.Index, pd.Series)):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Mapping):
        return {k: _to_native(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_to_native(v) for v in value)
    return value


class _KeyedFields:
    """Read-only mapping-style access to a dataclass's fields."""

    _NOT_SERIALISED: ClassVar[frozenset[str]] = frozenset({"context"})

    def __getitem__(self, key: str) -> Any:
        if key not in self:
            raise KeyError(key)
        return getattr(self, key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and hasattr(self, key)

    def get(self, key: str, default: Any = None) -> Any:
        return self[key] if key in self else default

    def to_dict(self) -> dict[str, Any]:
        """Fields as builtins, without run metadata."""
        return {
            f.name: _to_native(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
            if f.name not in self._NOT_SERIALISED
        }


# ------------------------------------------------------------------ #
# PredictionInterval
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PredictionInterval(_KeyedFields):
    """Interval for a single observation."""

    fit: float
    upper: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


# ------------------------------------------------------------------ #
# PredictionIntervalResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class PredictionIntervalResult(_KeyedFields):
    """Result of :func:`~merintervals.predict_interval`.

    Iterating over the result yields one :class:`PredictionInterval`
    per prediction row, in the order of the input.

    Attributes:
        fit: Point estimates ``(n,)``.
        upper: Upper bounds ``(n,)``.
        lower: Lower bounds ``(n,)``.
        index: Index of the prediction data.
        level: Interval coverage.
        n_sims: Number of simulation replicates.
        stat: ``"mean"`` or ``"median"``.
        type: Output scale (``"linear_prediction"`` / ``"probability"``).
        which: Component selection (``"full"``, ``"fixed"``,
            ``"random"`` or ``"all"``).
        family: Response family name.
        include_resid_var: Whether residual noise was added.
        components: Long-format per-component intervals (columns
            ``obs``, ``effect``, ``fit``, ``upper``, ``lower``) when
            ``which`` is ``"random"`` or ``"all"``, else ``None``.
        draws: The ``(n, n_sims)`` draw matrix when requested.
        context: Run metadata (excluded from :meth:`to_dict`).
    """

    _NOT_SERIALISED: ClassVar[frozenset[str]] = frozenset({"context", "draws"})

    fit: np.ndarray
    upper: np.ndarray
    lower: np.ndarray
    index: pd.Index
    level: float
    n_sims: int
    stat: str
    type: str
    which: str
    family: str
    include_resid_var: bool
    components: pd.DataFrame | None = None
    draws: np.ndarray | None = field(default=None, repr=False)
    context: SimulationContext | None = field(default=None, repr=False, compare=False)

    def __len__(self) -> int:
        return int(self.fit.shape[0])

    def __iter__(self) -> Iterator[PredictionInterval]:  # type: ignore[override]
        for i in range(len(self)):
            yield self.interval(i)

    def interval(self, i: int) -> PredictionInterval:
        """The interval of the *i*-th prediction row (positional)."""
        return PredictionInterval(
            fit=float(self.fit[i]),
            upper=float(self.upper[i]),
            lower=float(self.lower[i]),
        )

    @property
    def intervals(self) -> tuple[PredictionInterval, ...]:
        return tuple(self)

    def to_frame(self) -> pd.DataFrame:
        """``fit`` / ``upper`` / ``lower`` columns indexed like the input."""
        return pd.DataFrame(
            {"fit": self.fit, "upper": self.upper, "lower": self.lower},
            index=self.index,
        )


__all__ = ["PredictionInterval", "PredictionIntervalResult"]
