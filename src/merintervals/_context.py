"""Simulation context — mutable accumulator for run metadata.

A :class:`SimulationContext` travels through one
``predict_interval`` call and collects bookkeeping at the point where
each fact becomes known.  It ends up on the result as
``result.context`` so that callers (and tests) can inspect how a run
was carried out without re-computing anything.

Lifecycle::

    ┌─────────────────────────────────────────────────┐
    │  predict_interval()                             │
    │  ├─ ctx = SimulationContext()                   │
    │  ├─ PredictionIntervalEngine(…, ctx=ctx)        │
    │  │   ├─ ctx.family_name / ctx.backend           │
    │  │   ├─ ctx.n_obs / ctx.p / ctx.factor_levels   │
    │  │   ├─ ctx.new_level_rows                      │
    │  │   └─ ctx.seed_entropy                        │
    │  ├─ engine.run()                                │
    │  │   ├─ ctx.n_batches   (replicate batches)     │
    │  │   └─ ctx.n_chunks    (observation chunks)    │
    │  └─ result.context = ctx                        │
    └─────────────────────────────────────────────────┘

The context is not part of the serialised result:
:meth:`~_results.PredictionIntervalResult.to_dict` skips it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SimulationContext:
    """Mutable accumulator for one simulation run.

    Every field defaults to ``None`` (or an empty container); a
    ``None`` means that stage of the pipeline has not run yet.
    """

    # ---- Model ---------------------------------------------------
    family_name: str | None = None
    """Response family of the model (``"linear"`` / ``"logistic"``)."""

    p: int | None = None
    """Number of fixed effects."""

    factor_levels: dict[str, int] = field(default_factory=dict)
    """Number of fitted levels per grouping factor."""

    # ---- Inputs --------------------------------------------------
    n_obs: int | None = None
    """Number of prediction rows."""

    new_level_rows: dict[str, int] = field(default_factory=dict)
    """Rows whose level was unseen during fitting, per grouping factor.

    These rows use a zero random effect for that factor, which yields
    a narrower interval than rows of known groups.
    """

    # ---- Run configuration ---------------------------------------
    backend: str | None = None
    """Assembly backend (``"numpy"`` or ``"jax"``)."""

    n_jobs: int | None = None
    """Worker threads used for observation chunks."""

    seed_entropy: Any = None
    """Entropy of the run's root ``SeedSequence``.

    Passing it back as ``random_state`` reproduces the run exactly.
    """

    # ---- Progress ------------------------------------------------
    n_batches: int = 0
    """Replicate batches drawn by the coefficient sampler."""

    n_chunks: int = 0
    """Observation chunks assembled and summarised."""


__all__ = ["SimulationContext"]
