"""Input normalisation for prediction data.

``predict_interval`` works on a :class:`pandas.DataFrame` internally,
but callers hold observation rows in several shapes.  This module
converts them once at the boundary:

* ``pandas.DataFrame`` — returned as-is.
* ``pandas.Series`` — treated as a single observation row.
* ``polars.DataFrame`` / ``polars.LazyFrame`` — converted via
  ``.to_pandas()`` (Polars is optional).
* A sequence of mappings (``[{"x": 1.0, "Subject": "308"}, ...]``) —
  one mapping per row, in order.

Row order is preserved in every case, so results can be aligned with
the caller's input positionally.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

from ._typing import RowSequence

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = (
        pd.DataFrame | pd.Series | pl.DataFrame | pl.LazyFrame | RowSequence
    )
else:
    DataFrameLike: TypeAlias = pd.DataFrame | pd.Series | RowSequence

# Runtime detection — avoids a hard dependency on Polars.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "newdata") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Args:
        obj: Observation rows in any of the supported shapes.
        name: Label used in error messages.

    Returns:
        A pandas ``DataFrame`` with one row per observation.

    Raises:
        TypeError: If *obj* is not a recognised row container, or a
            row of a sequence is not a mapping.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if isinstance(obj, pd.Series):
        return obj.to_frame().T.infer_objects()

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        rows = list(obj)
        for i, row in enumerate(rows):
            if not isinstance(row, Mapping):
                msg = (
                    f"'{name}' row {i} must be a mapping of column names "
                    f"to values, got {type(row).__name__}."
                )
                raise TypeError(msg)
        return pd.DataFrame.from_records([dict(row) for row in rows])

    raise TypeError(
        f"'{name}' must be a pandas DataFrame, a sequence of mappings"
        + (", or a Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )
