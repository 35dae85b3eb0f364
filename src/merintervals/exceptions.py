"""Exception taxonomy for prediction-interval simulation.

Every error raised deliberately by the package derives from
:class:`MerIntervalsError`, so callers can catch the whole family
with a single ``except`` clause.  Each concrete class also inherits
from the built-in exception that best matches its meaning
(``ValueError`` for bad inputs, ``LinAlgError`` for numeric failures,
``RuntimeError`` for cancellation), so existing handlers keep working.

Configuration and input errors (``UnsupportedModelKind``,
``MissingCovariate``, ``UnsupportedOption``) are always raised before
the first random draw.  ``DegenerateCovariance`` may surface during
sampling and aborts the whole call.
"""

from __future__ import annotations

import numpy as np


class MerIntervalsError(Exception):
    """Base class for all package-specific errors."""


class UnsupportedModelKind(MerIntervalsError, ValueError):
    """The fitted model is neither linear nor binomial-logistic.

    Also raised when the model object cannot be introspected at all
    (unknown result type, variance components the simulator cannot
    represent).
    """


class DegenerateCovariance(MerIntervalsError, np.linalg.LinAlgError):
    """A covariance matrix cannot be used for multivariate-normal sampling.

    Raised for non-finite, asymmetric, or materially indefinite
    matrices.  Positive semi-definite (singular) matrices are accepted.
    """


class MissingCovariate(MerIntervalsError, ValueError):
    """``newdata`` lacks a column the model's design requires."""


class UnsupportedOption(MerIntervalsError, ValueError):
    """An option is invalid or incompatible with the model family."""


class SimulationCancelled(MerIntervalsError, RuntimeError):
    """The caller's cancel event was set between simulation batches."""


__all__ = [
    "DegenerateCovariance",
    "MerIntervalsError",
    "MissingCovariate",
    "SimulationCancelled",
    "UnsupportedModelKind",
    "UnsupportedOption",
]
