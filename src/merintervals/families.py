"""Response families and the response-scale transform.

The ``ResponseFamily`` protocol captures everything the simulator
needs to know about a model's response distribution:

* which output scales it supports (the linear predictor, or the
  response scale reached through the inverse link);
* whether observation-level residual variance can be added to the
  simulated linear predictor;
* how to turn a block of linear-predictor draws into response-scale
  draws.

Only two families are implemented — Gaussian with identity link
(:class:`LinearFamily`) and binomial with logit link
(:class:`LogisticFamily`).  :func:`resolve_family` maps user-facing
strings and statsmodels family objects onto them and rejects anything
else with :class:`~merintervals.exceptions.UnsupportedModelKind`.

Each concrete family is a frozen ``@dataclass`` without state, so a
single instance is safely shared by every worker thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import numpy as np
import statsmodels.api as sm
from scipy import special

from .exceptions import UnsupportedModelKind, UnsupportedOption

# ------------------------------------------------------------------ #
# Output scales
# ------------------------------------------------------------------ #

LINEAR_SCALE = "linear_prediction"
RESPONSE_SCALE = "probability"

_SCALE_ALIASES: dict[str, str] = {
    "linear_prediction": LINEAR_SCALE,
    "linear": LINEAR_SCALE,
    "link": LINEAR_SCALE,
    "probability": RESPONSE_SCALE,
    "response": RESPONSE_SCALE,
}


def resolve_scale(scale: str) -> str:
    """Normalise an output-scale name.

    ``"linear_prediction"`` (aliases ``"linear"``, ``"link"``) keeps
    draws on the linear-predictor scale; ``"probability"`` (alias
    ``"response"``) applies the inverse link.

    Raises:
        UnsupportedOption: If *scale* is not a recognised name.
    """
    key = str(scale).strip().lower()
    if key not in _SCALE_ALIASES:
        msg = (
            f"Unknown output type {scale!r}. Choose from: "
            f"{sorted(_SCALE_ALIASES)}."
        )
        raise UnsupportedOption(msg)
    return _SCALE_ALIASES[key]


# ------------------------------------------------------------------ #
# ResponseFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ResponseFamily(Protocol):
    """Interface every response family must implement.

    Attributes:
        name: Short identifier (``"linear"`` or ``"logistic"``).
        link: Name of the link function.
        supports_resid_var: Whether residual noise can be added.
    """

    @property
    def name(self) -> str: ...

    @property
    def link(self) -> str: ...

    @property
    def supports_resid_var(self) -> bool: ...

    def validate_options(
        self, scale: str, include_resid_var: bool, sigma2: float | None
    ) -> None:
        """Reject option combinations the family cannot honour."""
        ...

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        """Map linear-predictor values onto the response scale."""
        ...

    def transform(
        self,
        eta: np.ndarray,
        *,
        scale: str,
        include_resid_var: bool,
        sigma2: float | None,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Convert a block of linear-predictor draws to output-scale draws.

        *eta* may be modified in place; the returned array is the
        transformed block.
        """
        ...


# ------------------------------------------------------------------ #
# LinearFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LinearFamily:
    """Gaussian response with identity link.

    Residual noise ``N(0, sigma2)`` is drawn independently for every
    (observation, replicate) cell when ``include_resid_var`` is set.
    The inverse link is the identity, so the ``"probability"`` scale
    is accepted and yields the same draws as the linear scale.
    """

    @property
    def name(self) -> str:
        return "linear"

    @property
    def link(self) -> str:
        return "identity"

    @property
    def supports_resid_var(self) -> bool:
        return True

    def validate_options(
        self, scale: str, include_resid_var: bool, sigma2: float | None
    ) -> None:
        resolve_scale(scale)
        if include_resid_var:
            if sigma2 is None:
                msg = (
                    "include_resid_var=True requires a residual variance, "
                    "but the model summary carries none (sigma2=None)."
                )
                raise UnsupportedOption(msg)
            if not np.isfinite(sigma2) or sigma2 < 0:
                msg = f"Residual variance must be finite and >= 0, got {sigma2!r}."
                raise UnsupportedOption(msg)

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return eta

    def transform(
        self,
        eta: np.ndarray,
        *,
        scale: str,
        include_resid_var: bool,
        sigma2: float | None,
        rng: np.random.Generator,
    ) -> np.ndarray:
        if include_resid_var and sigma2:
            eta += rng.normal(0.0, np.sqrt(sigma2), size=eta.shape)
        return eta


# ------------------------------------------------------------------ #
# LogisticFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LogisticFamily:
    """Binomial response with logit link.

    Draws stay on the log-odds scale unless the caller asks for the
    ``"probability"`` scale, in which case the logistic sigmoid
    (``scipy.special.expit``) is applied element-wise.  There is no
    residual variance for this family; asking for it is a
    configuration error rather than a silent no-op.
    """

    @property
    def name(self) -> str:
        return "logistic"

    @property
    def link(self) -> str:
        return "logit"

    @property
    def supports_resid_var(self) -> bool:
        return False

    def validate_options(
        self, scale: str, include_resid_var: bool, sigma2: float | None
    ) -> None:
        resolve_scale(scale)
        if include_resid_var:
            msg = (
                "include_resid_var=True is not available for "
                f"family='{self.name}': a binomial model has no residual "
                "variance. Pass include_resid_var=False."
            )
            raise UnsupportedOption(msg)

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return special.expit(eta)

    def transform(
        self,
        eta: np.ndarray,
        *,
        scale: str,
        include_resid_var: bool,
        sigma2: float | None,
        rng: np.random.Generator,
    ) -> np.ndarray:
        if resolve_scale(scale) == RESPONSE_SCALE:
            special.expit(eta, out=eta)
        return eta


# ------------------------------------------------------------------ #
# Registry and resolution
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``ResponseFamily`` class under *name*.

    Raises:
        TypeError: If *cls* does not satisfy the protocol.
    """
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, ResponseFamily):
        msg = f"{cls!r} does not implement the ResponseFamily protocol."
        raise TypeError(msg)
    _FAMILIES[name] = cls


for _alias in ("linear", "gaussian", "identity"):
    register_family(_alias, LinearFamily)
for _alias in ("logistic", "binomial", "logit"):
    register_family(_alias, LogisticFamily)


def _from_statsmodels_family(family: Any) -> ResponseFamily:
    """Map a ``statsmodels.genmod.families.Family`` onto a response family."""
    links = sm.families.links
    # Probit and CLogLog subclass Logit, so compare link types exactly.
    if isinstance(family, sm.families.Gaussian) and type(family.link) is links.Identity:
        return LinearFamily()
    if isinstance(family, sm.families.Binomial) and type(family.link) is links.Logit:
        return LogisticFamily()
    msg = (
        f"Unsupported model family {type(family).__name__} with link "
        f"{type(family.link).__name__}. Only Gaussian/identity and "
        "Binomial/logit models are supported."
    )
    raise UnsupportedModelKind(msg)


def resolve_family(family: str | ResponseFamily | Any) -> ResponseFamily:
    """Resolve a family identifier to a concrete ``ResponseFamily``.

    Accepts a ``ResponseFamily`` instance (returned as-is), a
    registered name (``"linear"``, ``"gaussian"``, ``"logistic"``,
    ``"binomial"``, ...), or a statsmodels family object.

    Raises:
        UnsupportedModelKind: For any other family.
    """
    if isinstance(family, ResponseFamily):
        return family
    if isinstance(family, sm.families.Family):
        return _from_statsmodels_family(family)
    if isinstance(family, str):
        key = family.strip().lower()
        if key in _FAMILIES:
            return _FAMILIES[key]()
    msg = (
        f"Unsupported model family {family!r}. Supported: "
        f"{sorted(_FAMILIES)}."
    )
    raise UnsupportedModelKind(msg)
