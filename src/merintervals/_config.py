"""Compute-backend selection.

Only the linear-predictor assembly is backend-dependent.  Coefficient
draws, residual noise and the quantile summary are always NumPy, so a
seeded run gives the same draws on either backend.

The active backend is the first of:

1. the value given to :func:`set_backend` (or :func:`use_backend`
   inside a ``with`` block), unless it is ``"auto"``;
2. ``MERINTERVALS_BACKEND`` in the environment;
3. ``"jax"`` when JAX imports, ``"numpy"`` otherwise.

An unrecognised environment value is ignored with a warning; an
unrecognised programmatic value raises.

Examples:
    Shell::

        export MERINTERVALS_BACKEND=numpy

    Process-wide::

        merintervals.set_backend("numpy")

    Scoped::

        with merintervals.use_backend("numpy"):
            merintervals.predict_interval(fit, newdata)
"""

from __future__ import annotations

import os
import warnings
from collections.abc import Iterator
from contextlib import contextmanager

ENV_VAR = "MERINTERVALS_BACKEND"
BACKENDS = ("numpy", "jax")
AUTO = "auto"

_backend_override: str | None = None


def _jax_is_available() -> bool:
    try:
        import jax  # noqa: F401
    except ImportError:
        return False
    return True


def _normalise(name: str) -> str:
    value = str(name).strip().lower()
    if value != AUTO and value not in BACKENDS:
        msg = f"Unknown backend {name!r}.  Choose from {[*BACKENDS, AUTO]}."
        raise ValueError(msg)
    return value


def get_backend() -> str:
    """Name of the backend a call with ``backend=None`` will use."""
    if _backend_override not in (None, AUTO):
        return _backend_override

    env = os.environ.get(ENV_VAR, "").strip().lower()
    if env in BACKENDS:
        return env
    if env and env != AUTO:
        warnings.warn(
            f"Ignoring {ENV_VAR}={env!r}; expected one of {[*BACKENDS, AUTO]}.",
            UserWarning,
            stacklevel=2,
        )

    return "jax" if _jax_is_available() else "numpy"


def set_backend(name: str) -> None:
    """Set the process-wide backend.

    Args:
        name: ``"numpy"``, ``"jax"``, or ``"auto"`` to fall back to the
            environment and auto-detection.  Case-insensitive.

    Raises:
        ValueError: If *name* is not one of the above.
    """
    global _backend_override
    _backend_override = _normalise(name)


@contextmanager
def use_backend(name: str) -> Iterator[str]:
    """Temporarily set the backend, restoring the previous setting on exit.

    Yields the resolved backend name.
    """
    global _backend_override
    saved = _backend_override
    _backend_override = _normalise(name)
    try:
        yield get_backend()
    finally:
        _backend_override = saved
