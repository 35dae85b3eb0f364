"""JAX backend for linear-predictor assembly.

Wraps JIT-compiled kernels for the fixed and random parts behind the
:class:`~._backends.BackendProtocol` interface.

NumPy ↔ JAX boundary convention
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
All public methods accept NumPy arrays and return NumPy arrays.

* **Inbound:** ``jnp.asarray(x, dtype=jnp.float64)``.
* **Outbound:** ``np.asarray(result)``; a writable copy is returned
  because the caller transforms draws in place.

Float64 is enabled at import so that JAX results agree with the NumPy
backend to rounding error.

Unseen levels
~~~~~~~~~~~~~
JAX gathers need in-range indices, so unseen rows (``-1``) gather
level 0 and are then multiplied by a zero mask.  The masked rows
are exactly zero, matching the NumPy backend.

Graceful degradation
~~~~~~~~~~~~~~~~~~~~
If JAX is not installed, :class:`JaxBackend` can still be instantiated
but ``is_available`` returns ``False`` and
:func:`~._backends.resolve_backend` raises ``ImportError`` when this
backend is explicitly requested.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

try:
    import jax

    jax.config.update("jax_enable_x64", True)

    import jax.numpy as jnp
    from jax import jit

    _CAN_IMPORT_JAX = True
except ImportError:
    _CAN_IMPORT_JAX = False


if _CAN_IMPORT_JAX:

    @jit
    def _fixed_part(X: jax.Array, beta: jax.Array) -> jax.Array:
        return X @ beta.T

    @jit
    def _random_part(Z: jax.Array, level_idx: jax.Array, u: jax.Array) -> jax.Array:
        known = level_idx >= 0
        safe_idx = jnp.where(known, level_idx, 0)
        u_rows = u[:, safe_idx, :]  # (S, n, q)
        contrib = jnp.einsum("nq,snq->ns", Z, u_rows)
        return jnp.where(known[:, None], contrib, 0.0)


@dataclass(frozen=True)
class JaxBackend:
    """JAX compute backend (optional dependency)."""

    @property
    def name(self) -> str:
        return "jax"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return _CAN_IMPORT_JAX

    def fixed_part(self, X: np.ndarray, beta: np.ndarray) -> np.ndarray:
        out = _fixed_part(
            jnp.asarray(X, dtype=jnp.float64), jnp.asarray(beta, dtype=jnp.float64)
        )
        return np.array(out)

    def random_part(
        self,
        Z: np.ndarray,
        level_idx: np.ndarray,
        u: np.ndarray,
    ) -> np.ndarray:
        out = _random_part(
            jnp.asarray(Z, dtype=jnp.float64),
            jnp.asarray(level_idx),
            jnp.asarray(u, dtype=jnp.float64),
        )
        return np.array(out)
