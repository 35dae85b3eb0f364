"""NumPy backend (always available).

Fixed part
~~~~~~~~~~
``X @ beta.T`` is a single BLAS-3 product ``(n, p) @ (p, S)``.

Random part
~~~~~~~~~~~
For one grouping factor the contribution of row *i* in replicate *s*
is ``Z[i] · u[s, g(i)]``.  Gathering ``u[:, g, :]`` for the rows of
the chunk whose level was seen during fitting gives an ``(S, m, q)``
block; one ``einsum`` contracts it against ``Z`` for all replicates
at once.  Rows with an unseen level are never gathered and keep the
zero they were initialised with, which is exactly the
fixed-effects-only fallback.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy compute backend.

    Stateless frozen dataclass, safe to cache and to share between
    worker threads (NumPy's BLAS calls release the GIL).
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return True

    def fixed_part(self, X: np.ndarray, beta: np.ndarray) -> np.ndarray:
        return np.asarray(X, dtype=np.float64) @ np.asarray(beta, dtype=np.float64).T

    def random_part(
        self,
        Z: np.ndarray,
        level_idx: np.ndarray,
        u: np.ndarray,
    ) -> np.ndarray:
        n = Z.shape[0]
        S = u.shape[0]
        out = np.zeros((n, S), dtype=np.float64)
        known = np.flatnonzero(level_idx >= 0)
        if known.size == 0:
            return out
        # (S, m, q) draws of the levels the known rows belong to
        u_rows = u[:, level_idx[known], :]
        out[known] = np.einsum("mq,smq->ms", Z[known], u_rows)
        return out
