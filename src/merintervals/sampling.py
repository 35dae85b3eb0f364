"""Coefficient sampler: draws of fixed effects and conditional modes.

Approximate sampling distributions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Each simulation replicate *s* draws

    β⁽ˢ⁾ ~ N(β̂, Var(β̂))                       (p,)
    u_kg⁽ˢ⁾ ~ N(û_kg, Var(u_kg | y))            (q_k,) for every level g

independently across replicates, levels, and grouping factors.  The
random-effect variance parameters θ are *not* resampled; the
conditional covariances are taken as fixed, known quantities.  This is
what makes the method cheap compared with a parametric bootstrap, and
it is also why the resulting intervals are somewhat narrower.

Matrix square roots
~~~~~~~~~~~~~~~~~~~
Multivariate-normal draws are ``μ + L z`` with ``z ~ N(0, I)`` and
``L Lᵀ = Σ``.  ``L`` comes from a symmetric eigendecomposition
``Σ = V diag(w) Vᵀ`` → ``L = V diag(√w)`` rather than a Cholesky
factorisation, so that positive *semi*-definite matrices (a random
slope with zero conditional variance, a singular ``Var(β̂)``) are
accepted.  Matrices that are non-finite, asymmetric, or have an
eigenvalue below ``-tol · max|w|`` raise
:class:`~merintervals.exceptions.DegenerateCovariance`; no identity
matrix or jitter is ever substituted.

Per-level covariances are stacked into ``(G, q, q)`` tables, so one
batched ``eigh`` call factorises a whole grouping factor.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np

from .exceptions import DegenerateCovariance
from .introspect import MixedModelSummary

logger = logging.getLogger(__name__)

_DEFAULT_TOL: float = 1e-8
"""Relative tolerance for symmetry and negative-eigenvalue checks."""


# ------------------------------------------------------------------ #
# Covariance factorisation
# ------------------------------------------------------------------ #


def covariance_factor(
    cov: np.ndarray,
    *,
    tol: float = _DEFAULT_TOL,
    label: str = "covariance matrix",
) -> np.ndarray:
    """Return ``L`` with ``L @ L.T == cov`` for one matrix or a stack.

    Args:
        cov: ``(q, q)`` or ``(..., q, q)`` covariance matrices.
        tol: Relative tolerance for asymmetry and for negative
            eigenvalues (relative to the largest absolute eigenvalue
            of the same matrix).
        label: Human-readable name used in error messages.

    Returns:
        Array of the same shape as *cov*.

    Raises:
        DegenerateCovariance: If any matrix is non-finite, asymmetric,
            or not positive semi-definite within *tol*.
    """
    cov = np.asarray(cov, dtype=np.float64)
    if cov.ndim < 2 or cov.shape[-1] != cov.shape[-2]:
        msg = f"{label} must be square, got shape {cov.shape}."
        raise DegenerateCovariance(msg)
    if not np.all(np.isfinite(cov)):
        msg = f"{label} contains non-finite entries."
        raise DegenerateCovariance(msg)

    cov_t = np.swapaxes(cov, -1, -2)
    scale = np.abs(cov).max(axis=(-2, -1), initial=0.0)
    asym = np.abs(cov - cov_t).max(axis=(-2, -1), initial=0.0)
    if np.any(asym > tol * np.maximum(scale, np.finfo(np.float64).tiny)):
        msg = f"{label} is not symmetric (max asymmetry {float(np.max(asym)):.3g})."
        raise DegenerateCovariance(msg)

    try:
        w, V = np.linalg.eigh(0.5 * (cov + cov_t))
    except np.linalg.LinAlgError as exc:
        msg = f"Eigendecomposition of {label} failed: {exc}"
        raise DegenerateCovariance(msg) from exc

    w_max = np.abs(w).max(axis=-1, keepdims=True, initial=0.0)
    negative = w < -tol * w_max
    if np.any(negative):
        detail = ""
        if cov.ndim > 2:
            where = np.argwhere(negative.any(axis=-1)).tolist()
            detail = f" (matrices {where[:5]})"
        msg = (
            f"{label} is not positive semi-definite{detail}: smallest "
            f"eigenvalue {float(w.min()):.3g}."
        )
        raise DegenerateCovariance(msg)

    return V * np.sqrt(np.clip(w, 0.0, None))[..., None, :]


# ------------------------------------------------------------------ #
# Draw containers
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CoefficientDraw:
    """One simulation replicate: a fixed-effect vector and one
    random-effect matrix ``(G_k, q_k)`` per grouping factor."""

    fixed: np.ndarray
    random: tuple[np.ndarray, ...]


@dataclass(frozen=True)
class CoefficientBatch:
    """A contiguous block of replicates.

    Attributes:
        start: Index of the first replicate in the full run.
        fixed: Fixed-effect draws ``(S, p)``.
        random: Per-factor random-effect draws ``(S, G_k, q_k)``.
    """

    start: int
    fixed: np.ndarray
    random: tuple[np.ndarray, ...]

    @property
    def size(self) -> int:
        return int(self.fixed.shape[0])

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, s: int) -> CoefficientDraw:
        return CoefficientDraw(
            fixed=self.fixed[s],
            random=tuple(r[s] for r in self.random),
        )


# ------------------------------------------------------------------ #
# Sampling primitives
# ------------------------------------------------------------------ #


def draw_fixed_effects(
    mean: np.ndarray,
    cov: np.ndarray | None,
    n_sims: int,
    rng: np.random.Generator,
    *,
    factor: np.ndarray | None = None,
) -> np.ndarray:
    """Joint multivariate-normal draws of the fixed effects.

    Args:
        mean: Estimates β̂ ``(p,)``.
        cov: ``Var(β̂)`` ``(p, p)``; ignored when *factor* is given.
        n_sims: Number of replicates.
        rng: Generator consumed for ``n_sims * p`` standard normals.
        factor: Precomputed square root of *cov*.

    Returns:
        ``(n_sims, p)`` array.
    """
    mean = np.asarray(mean, dtype=np.float64)
    if factor is None:
        factor = covariance_factor(cov, label="fixed-effect covariance")
    z = rng.standard_normal((n_sims, mean.shape[0]))
    return mean + z @ factor.T


def draw_random_effects(
    modes: np.ndarray,
    cond_cov: np.ndarray | None,
    n_sims: int,
    rng: np.random.Generator,
    *,
    factor: np.ndarray | None = None,
) -> np.ndarray:
    """Per-level multivariate-normal draws of the conditional modes.

    Args:
        modes: Conditional modes ``(G, q)``.
        cond_cov: Conditional covariance table ``(G, q, q)``; ignored
            when *factor* is given.
        n_sims: Number of replicates.
        rng: Generator consumed for ``n_sims * G * q`` standard normals.
        factor: Precomputed square roots of *cond_cov*.

    Returns:
        ``(n_sims, G, q)`` array.
    """
    modes = np.asarray(modes, dtype=np.float64)
    if factor is None:
        factor = covariance_factor(cond_cov, label="conditional covariance")
    z = rng.standard_normal((n_sims, *modes.shape))
    return modes[None, :, :] + np.einsum("gij,sgj->sgi", factor, z)


# ------------------------------------------------------------------ #
# CoefficientSampler
# ------------------------------------------------------------------ #


class CoefficientSampler:
    """Streams coefficient draws for a model summary.

    All matrix square roots are computed once at construction, so a
    degenerate covariance is reported before the first replicate is
    drawn.

    Args:
        summary: The model to sample from.
        tol: Tolerance forwarded to :func:`covariance_factor`.
    """

    def __init__(self, summary: MixedModelSummary, *, tol: float = _DEFAULT_TOL) -> None:
        self.summary = summary
        self._fixed_factor = covariance_factor(
            summary.fixed_cov, tol=tol, label="fixed-effect covariance"
        )
        self._random_factors = tuple(
            covariance_factor(
                f.cond_cov,
                tol=tol,
                label=f"conditional covariance of grouping factor '{f.name}'",
            )
            for f in summary.factors
        )

    def draw(self, n_sims: int, rng: np.random.Generator, *, start: int = 0) -> CoefficientBatch:
        """Draw *n_sims* replicates: fixed effects first, then each factor."""
        fixed = draw_fixed_effects(
            self.summary.fixed_effects,
            None,
            n_sims,
            rng,
            factor=self._fixed_factor,
        )
        random = tuple(
            draw_random_effects(f.modes, None, n_sims, rng, factor=L)
            for f, L in zip(self.summary.factors, self._random_factors)
        )
        return CoefficientBatch(start=start, fixed=fixed, random=random)

    def batches(
        self,
        n_sims: int,
        rng: np.random.Generator,
        batch_size: int,
    ) -> Iterator[CoefficientBatch]:
        """Yield replicate batches of at most *batch_size* until *n_sims* are drawn."""
        start = 0
        while start < n_sims:
            size = min(batch_size, n_sims - start)
            logger.debug("Drawing replicates %d-%d", start, start + size - 1)
            yield self.draw(size, rng, start=start)
            start += size


__all__ = [
    "CoefficientBatch",
    "CoefficientDraw",
    "CoefficientSampler",
    "covariance_factor",
    "draw_fixed_effects",
    "draw_random_effects",
]
