"""Shared type aliases for the merintervals package."""

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np

# Seeds accepted wherever randomness is drawn.
RandomState = int | np.random.SeedSequence | np.random.Generator | None

# A sequence of observation rows given as plain mappings.
RowSequence = Sequence[Mapping[str, Any]]
