"""Backend abstraction layer for linear-predictor assembly.

Assembly is the dominant cost of the simulation: every one of the
``n_obs × n_sims`` cells of the draw matrix needs a fixed-effect dot
product plus one random-effect dot product per grouping factor.  Each
backend implements the :class:`BackendProtocol` interface, which
evaluates a whole observation chunk against a whole block of
replicates in a handful of batched array operations.

Resolution follows the policy set by :mod:`.._config`:

1. Programmatic override via :func:`~merintervals.set_backend`.
2. ``MERINTERVALS_BACKEND`` environment variable.
3. Auto-detection: ``"jax"`` if importable, else ``"numpy"``.

When ``"jax"`` is explicitly requested but JAX is not installed, an
:class:`ImportError` is raised — explicit requests are never silently
degraded.  Only the ``"auto"`` policy falls back from JAX to NumPy.

Backends only do arithmetic.  Random numbers are always drawn by the
caller with NumPy, so a seeded run produces the same draws whichever
backend assembles them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

import numpy as np

from .._config import get_backend

# ------------------------------------------------------------------ #
# BackendProtocol
# ------------------------------------------------------------------ #


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every assembly backend must implement.

    Attributes:
        name: Short identifier (e.g. ``"numpy"``, ``"jax"``).
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    def fixed_part(self, X: np.ndarray, beta: np.ndarray) -> np.ndarray:
        """Fixed-effect contribution for a chunk.

        Args:
            X: Fixed-effect design ``(n, p)``.
            beta: Fixed-effect draws ``(S, p)``.

        Returns:
            ``(n, S)`` array ``X @ beta.T``.
        """
        ...

    def random_part(
        self,
        Z: np.ndarray,
        level_idx: np.ndarray,
        u: np.ndarray,
    ) -> np.ndarray:
        """Random-effect contribution of one grouping factor for a chunk.

        Row *i* receives ``Z[i] · u[s, level_idx[i]]`` for every
        replicate *s*; rows with ``level_idx[i] == -1`` (level unseen
        during fitting) receive exactly zero.

        Args:
            Z: Random-effect design ``(n, q)``.
            level_idx: Level positions ``(n,)``, ``-1`` for unseen.
            u: Random-effect draws ``(S, G, q)``.

        Returns:
            ``(n, S)`` array.
        """
        ...


# ------------------------------------------------------------------ #
# Backend resolution
# ------------------------------------------------------------------ #


def _load_numpy() -> BackendProtocol:
    from ._numpy import NumpyBackend

    return NumpyBackend()


def _load_jax() -> BackendProtocol:
    from ._jax import JaxBackend

    backend = JaxBackend()
    if not backend.is_available:
        msg = (
            "The 'jax' backend needs JAX, which is not installed.  "
            "Install the 'jax' extra or select the 'numpy' backend."
        )
        raise ImportError(msg)
    return backend


_LOADERS: dict[str, Callable[[], BackendProtocol]] = {
    "numpy": _load_numpy,
    "jax": _load_jax,
}

# One instance per name; JAX kernels are compiled on first use.
_instances: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | None = None) -> BackendProtocol:
    """Return the backend called *name* (``None``: the configured default).

    Raises:
        ImportError: ``"jax"`` was requested but JAX is not installed.
        ValueError: *name* is not a known backend.
    """
    key = (get_backend() if name is None else name).strip().lower()
    try:
        return _instances[key]
    except KeyError:
        pass
    try:
        loader = _LOADERS[key]
    except KeyError:
        msg = f"Unknown backend {name!r}.  Choose from {sorted(_LOADERS)}."
        raise ValueError(msg) from None
    _instances[key] = backend = loader()
    return backend
