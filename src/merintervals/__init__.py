"""merintervals — Simulation-based prediction intervals for mixed models.

Draws fixed effects and conditional random effects from their
approximate sampling distributions, assembles the linear predictor for
new observations, optionally adds residual noise or applies the
inverse logit, and summarises the simulated draws into per-observation
intervals.  Supports linear mixed models and binomial-logit GLMMs
fitted with statsmodels, vectorised assembly on NumPy or JAX, and
threaded evaluation over observation chunks.

Public API:
    .. autosummary::
        predict_interval
        extract_model
        MixedModelSummary
        GroupingFactor
        CoefficientSampler
        PredictionIntervalEngine
        summarize_draws
        average_obs
        random_obs
        wiggle_obs
        find_re_quantile
        get_backend
        set_backend
        use_backend
        ResponseFamily
        LinearFamily
        LogisticFamily
        resolve_family
        register_family
        SimulationContext
        PredictionInterval
        PredictionIntervalResult
"""

from ._config import get_backend, set_backend, use_backend
from ._context import SimulationContext
from ._results import PredictionInterval, PredictionIntervalResult
from .core import predict_interval
from .engine import PredictionIntervalEngine
from .exceptions import (
    DegenerateCovariance,
    MerIntervalsError,
    MissingCovariate,
    SimulationCancelled,
    UnsupportedModelKind,
    UnsupportedOption,
)
from .families import (
    LinearFamily,
    LogisticFamily,
    ResponseFamily,
    register_family,
    resolve_family,
)
from .frames import average_obs, find_re_quantile, random_obs, wiggle_obs
from .introspect import GroupingFactor, MixedModelSummary, extract_model
from .sampling import CoefficientSampler
from .summarize import summarize_draws

__all__ = [
    "PredictionInterval",
    "PredictionIntervalResult",
    "SimulationContext",
    "predict_interval",
    "PredictionIntervalEngine",
    "extract_model",
    "GroupingFactor",
    "MixedModelSummary",
    "CoefficientSampler",
    "summarize_draws",
    "average_obs",
    "find_re_quantile",
    "random_obs",
    "wiggle_obs",
    "get_backend",
    "set_backend",
    "use_backend",
    "ResponseFamily",
    "LinearFamily",
    "LogisticFamily",
    "resolve_family",
    "register_family",
    "MerIntervalsError",
    "UnsupportedModelKind",
    "DegenerateCovariance",
    "MissingCovariate",
    "UnsupportedOption",
    "SimulationCancelled",
]

__version__ = "0.1.0"
