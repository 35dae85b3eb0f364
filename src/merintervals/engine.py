"""Prediction-interval engine — validation, sampling, and chunked assembly.

The :class:`PredictionIntervalEngine` centralises everything that
happens in a ``predict_interval`` call:

1. **Model introspection** — reduce the fitted model to a
   :class:`~merintervals.introspect.MixedModelSummary`.
2. **Option validation** — level, replicate count, point statistic,
   output scale, component selection, and family-specific options
   (residual variance on a logistic model).  Every configuration
   error is raised here, before a single random number is drawn.
3. **Design construction** — fixed and random design arrays for the
   prediction data; missing covariates fail fast, unseen group levels
   are counted and fall back to a zero random effect.
4. **Backend resolution** — NumPy or JAX for the assembly arithmetic.
5. **Coefficient sampling** — replicate batches drawn on the calling
   thread from one seeded generator.
6. **Chunked assembly** — observation chunks are assembled,
   transformed to the output scale, and summarised independently,
   optionally on a joblib thread pool.

Reproducibility
~~~~~~~~~~~~~~~
A root :class:`numpy.random.SeedSequence` is spawned into one child
for the coefficient draws and one child per observation chunk for the
residual noise.  The chunk layout depends only on ``chunk_size``, so
the output is bit-identical for any ``n_jobs`` and either backend
(up to floating-point summation order on JAX).  Changing
``batch_size`` or ``chunk_size`` changes the random stream.

Cancellation
~~~~~~~~~~~~
When a ``threading.Event`` is supplied and gets set, the engine stops
at the next replicate batch or observation chunk and raises
:class:`~merintervals.exceptions.SimulationCancelled`.  No partial
result is returned.
"""

from __future__ import annotations

import logging
import operator
import threading
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ._backends import resolve_backend
from ._compat import DataFrameLike, _ensure_pandas_df
from ._context import SimulationContext
from ._results import PredictionIntervalResult
from ._typing import RandomState
from .assembly import (
    PredictionDesign,
    build_design,
    linear_predictor,
    linear_predictor_components,
)
from .exceptions import SimulationCancelled, UnsupportedOption
from .families import resolve_scale
from .introspect import extract_model
from .sampling import CoefficientBatch, CoefficientSampler
from .summarize import (
    IntervalBounds,
    summarize_draws,
    validate_level,
    validate_quantile_method,
    validate_stat,
)

logger = logging.getLogger(__name__)

DEFAULT_N_SIMS: int = 1_000
DEFAULT_LEVEL: float = 0.95
DEFAULT_CHUNK_SIZE: int = 512
"""Observations per chunk; bounds the ``(chunk, n_sims)`` working set."""
DEFAULT_BATCH_SIZE: int = 1_000
"""Replicates drawn per sampler call."""

COMPONENTS: frozenset[str] = frozenset({"full", "fixed", "random", "all"})


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        msg = f"{name} must be a positive integer, got {value!r}."
        raise UnsupportedOption(msg)
    try:
        value = operator.index(value)
    except TypeError:
        msg = f"{name} must be a positive integer, got {value!r}."
        raise UnsupportedOption(msg) from None
    if value < 1:
        msg = f"{name} must be >= 1, got {value}."
        raise UnsupportedOption(msg)
    return value


def _resolve_seed_sequence(random_state: RandomState) -> np.random.SeedSequence:
    """Map every accepted seed form onto a root ``SeedSequence``."""
    if isinstance(random_state, np.random.SeedSequence):
        return random_state
    if isinstance(random_state, np.random.Generator):
        # Consumes 16 bytes of the caller's generator.
        return np.random.SeedSequence(int.from_bytes(random_state.bytes(16), "little"))
    return np.random.SeedSequence(random_state)


def _concat_batches(batches: list[CoefficientBatch]) -> CoefficientBatch:
    if len(batches) == 1:
        return batches[0]
    n_factors = len(batches[0].random)
    return CoefficientBatch(
        start=0,
        fixed=np.concatenate([b.fixed for b in batches], axis=0),
        random=tuple(
            np.concatenate([b.random[k] for b in batches], axis=0)
            for k in range(n_factors)
        ),
    )


@dataclass(frozen=True)
class _ChunkOutput:
    main: IntervalBounds
    components: tuple[tuple[str, IntervalBounds], ...]
    draws: np.ndarray | None


# ------------------------------------------------------------------ #
# PredictionIntervalEngine
# ------------------------------------------------------------------ #


class PredictionIntervalEngine:
    """Validated, ready-to-run prediction-interval simulation.

    Construction performs every check that does not need random
    numbers; :meth:`run` performs the simulation.  The engine can be
    run repeatedly and returns identical results each time.

    Attributes:
        summary: Introspected model.
        family: Response family of the model.
        design: Numeric design of the prediction data.
        backend_name: Active assembly backend.
        ctx: Run metadata accumulator.
    """

    def __init__(
        self,
        model: Any,
        newdata: DataFrameLike,
        *,
        level: float = DEFAULT_LEVEL,
        n_sims: int = DEFAULT_N_SIMS,
        stat: str = "median",
        type: str = "linear_prediction",  # noqa: A002
        include_resid_var: bool = True,
        which: str = "full",
        random_state: RandomState = None,
        n_jobs: int = 1,
        backend: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        quantile_method: str = "linear",
        return_draws: bool = False,
        cancel_event: threading.Event | None = None,
        group_name: str | None = None,
        ctx: SimulationContext | None = None,
    ) -> None:
        self.ctx: SimulationContext = ctx if ctx is not None else SimulationContext()

        # ---- Model introspection ----------------------------------
        self.summary = extract_model(model, group_name=group_name)
        self.family = self.summary.family
        self.ctx.family_name = self.family.name
        self.ctx.p = self.summary.p
        self.ctx.factor_levels = {f.name: f.n_levels for f in self.summary.factors}

        # ---- Option validation ------------------------------------
        self.level = validate_level(level)
        self.n_sims = _positive_int(n_sims, "n_sims")
        self.stat = validate_stat(stat)
        self.scale = resolve_scale(type)
        self.quantile_method = validate_quantile_method(quantile_method)
        self.chunk_size = _positive_int(chunk_size, "chunk_size")
        self.batch_size = _positive_int(batch_size, "batch_size")
        self.include_resid_var = bool(include_resid_var)
        self.return_draws = bool(return_draws)
        self.cancel_event = cancel_event

        which = str(which).strip().lower()
        if which not in COMPONENTS:
            msg = f"Unknown component selection {which!r}. Choose from: {sorted(COMPONENTS)}."
            raise UnsupportedOption(msg)
        if which == "random" and not self.summary.factors:
            msg = "which='random' requires a model with at least one grouping factor."
            raise UnsupportedOption(msg)
        self.which = which

        self.family.validate_options(self.scale, self.include_resid_var, self.summary.sigma2)

        # ---- Prediction data --------------------------------------
        frame = _ensure_pandas_df(newdata, name="newdata")
        if len(frame) == 0:
            msg = "newdata must contain at least one observation."
            raise ValueError(msg)
        self.newdata = frame
        self.design: PredictionDesign = build_design(self.summary, frame)
        self.ctx.n_obs = self.design.n_obs
        self.ctx.new_level_rows = self.design.new_level_counts

        # ---- Backend resolution -----------------------------------
        self._backend = resolve_backend(backend)
        self.backend_name: str = self._backend.name
        if n_jobs == 0:
            msg = "n_jobs must be a non-zero integer (use -1 for all cores)."
            raise UnsupportedOption(msg)
        self._n_jobs = int(n_jobs)
        if self._n_jobs != 1 and self.backend_name == "jax":
            warnings.warn(
                "n_jobs is ignored when the JAX backend is active because "
                "JAX vectorises each chunk itself.  Falling back to n_jobs=1.",
                UserWarning,
                stacklevel=3,
            )
            self._n_jobs = 1
        self.ctx.backend = self.backend_name
        self.ctx.n_jobs = self._n_jobs

        # ---- Seeds --------------------------------------------------
        self._seed_seq = _resolve_seed_sequence(random_state)
        self.ctx.seed_entropy = self._seed_seq.entropy

        logger.debug(
            "Engine ready: family=%s n_obs=%d n_sims=%d which=%s scale=%s "
            "backend=%s n_jobs=%d",
            self.family.name,
            self.design.n_obs,
            self.n_sims,
            self.which,
            self.scale,
            self.backend_name,
            self._n_jobs,
        )

    # ---- Cancellation --------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            msg = "Prediction-interval simulation cancelled by the caller."
            raise SimulationCancelled(msg)

    # ---- Sampling --------------------------------------------------

    def _draw_coefficients(self, seq: np.random.SeedSequence) -> CoefficientBatch:
        rng = np.random.default_rng(seq)
        sampler = CoefficientSampler(self.summary)
        batches: list[CoefficientBatch] = []
        for batch in sampler.batches(self.n_sims, rng, self.batch_size):
            batches.append(batch)
            self.ctx.n_batches += 1
            self._check_cancelled()
        return _concat_batches(batches)

    # ---- Per-chunk work -------------------------------------------

    def _transform(self, eta: np.ndarray, seq: np.random.SeedSequence) -> np.ndarray:
        # A fresh generator per call: the full and fixed components of
        # one chunk receive identical residual noise.
        return self.family.transform(
            eta,
            scale=self.scale,
            include_resid_var=self.include_resid_var,
            sigma2=self.summary.sigma2,
            rng=np.random.default_rng(seq),
        )

    def _summarize(self, draws: np.ndarray) -> IntervalBounds:
        return summarize_draws(
            draws, self.level, self.stat, quantile_method=self.quantile_method
        )

    def _simulate_chunk(
        self,
        design: PredictionDesign,
        draws: CoefficientBatch,
        seq: np.random.SeedSequence,
    ) -> _ChunkOutput:
        self._check_cancelled()

        if self.which == "full":
            eta = self._transform(linear_predictor(design, draws, self._backend), seq)
            return _ChunkOutput(
                main=self._summarize(eta),
                components=(),
                draws=eta if self.return_draws else None,
            )

        fixed, random = linear_predictor_components(design, draws, self._backend)

        if self.which == "fixed":
            eta = self._transform(fixed, seq)
            return _ChunkOutput(
                main=self._summarize(eta),
                components=(),
                draws=eta if self.return_draws else None,
            )

        per_factor = tuple(
            (name, self._summarize(r)) for name, r in zip(design.factor_names, random)
        )
        random_total = np.sum(random, axis=0) if random else np.zeros_like(fixed)

        if self.which == "random":
            return _ChunkOutput(
                main=self._summarize(random_total),
                components=per_factor,
                draws=random_total if self.return_draws else None,
            )

        # which == "all"
        full = self._transform(fixed + random_total, seq)
        fixed_only = self._transform(fixed, seq)
        full_bounds = self._summarize(full)
        return _ChunkOutput(
            main=full_bounds,
            components=(
                ("full", full_bounds),
                ("fixed", self._summarize(fixed_only)),
                *per_factor,
            ),
            draws=full if self.return_draws else None,
        )

    # ---- Run ---------------------------------------------------------

    def run(self) -> PredictionIntervalResult:
        """Simulate and summarise.

        Raises:
            DegenerateCovariance: If a covariance cannot be sampled from.
            SimulationCancelled: If the cancel event is set.
        """
        root = np.random.SeedSequence(
            self._seed_seq.entropy, spawn_key=self._seed_seq.spawn_key
        )
        coef_seq, noise_seq = root.spawn(2)
        self.ctx.n_batches = 0
        self.ctx.n_chunks = 0

        draws = self._draw_coefficients(coef_seq)

        n = self.design.n_obs
        bounds = [(s, min(s + self.chunk_size, n)) for s in range(0, n, self.chunk_size)]
        chunk_seqs = noise_seq.spawn(len(bounds))

        def _one(i: int) -> _ChunkOutput:
            start, stop = bounds[i]
            return self._simulate_chunk(self.design.chunk(start, stop), draws, chunk_seqs[i])

        if self._n_jobs == 1 or len(bounds) == 1:
            outputs = [_one(i) for i in range(len(bounds))]
        else:
            outputs = Parallel(n_jobs=self._n_jobs, prefer="threads")(
                delayed(_one)(i) for i in range(len(bounds))
            )
        self.ctx.n_chunks = len(outputs)
        logger.debug("Processed %d chunk(s) of up to %d rows", len(outputs), self.chunk_size)

        return self._package(outputs)

    def _package(self, outputs: list[_ChunkOutput]) -> PredictionIntervalResult:
        fit = np.concatenate([o.main.fit for o in outputs])
        upper = np.concatenate([o.main.upper for o in outputs])
        lower = np.concatenate([o.main.lower for o in outputs])

        components: pd.DataFrame | None = None
        if outputs[0].components:
            obs = np.arange(self.design.n_obs)
            frames = []
            for k, (name, _) in enumerate(outputs[0].components):
                frames.append(
                    pd.DataFrame(
                        {
                            "obs": obs,
                            "effect": name,
                            "fit": np.concatenate([o.components[k][1].fit for o in outputs]),
                            "upper": np.concatenate(
                                [o.components[k][1].upper for o in outputs]
                            ),
                            "lower": np.concatenate(
                                [o.components[k][1].lower for o in outputs]
                            ),
                        }
                    )
                )
            components = pd.concat(frames, ignore_index=True)

        draws = None
        if self.return_draws:
            draws = np.concatenate([o.draws for o in outputs], axis=0)

        return PredictionIntervalResult(
            fit=fit,
            upper=upper,
            lower=lower,
            index=self.design.index,
            level=self.level,
            n_sims=self.n_sims,
            stat=self.stat,
            type=self.scale,
            which=self.which,
            family=self.family.name,
            include_resid_var=self.include_resid_var,
            components=components,
            draws=draws,
            context=self.ctx,
        )


__all__ = [
    "COMPONENTS",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_LEVEL",
    "DEFAULT_N_SIMS",
    "PredictionIntervalEngine",
]
