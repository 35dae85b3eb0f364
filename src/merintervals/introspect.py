"""Model introspection: a narrow, read-only view of a fitted mixed model.

The simulator never touches a model-fitting library directly.  It
works from a :class:`MixedModelSummary`, which holds exactly the
quantities the prediction-interval simulation needs:

* fixed-effect names, estimates β̂ ``(p,)`` and covariance
  ``Var(β̂)`` ``(p, p)``;
* one :class:`GroupingFactor` per random-effect grouping factor, with
  the conditional modes û ``(G, q)`` and the conditional covariance
  table ``(G, q, q)`` indexed by level;
* the residual variance σ̂² (linear models only);
* the response family.

:func:`extract_model` builds a summary from statsmodels results:

``MixedLMResults``
    Linear mixed model with one grouping factor, random intercept
    and/or random slopes.  Conditional modes come from
    ``random_effects``, conditional covariances from
    ``random_effects_cov``, σ̂² from ``scale``.

``BayesMixedGLMResults``
    Binomial-logit GLMM with independent random intercepts specified
    as variance components.  Every variance component becomes a
    grouping factor with ``q = 1``; the posterior mean and variance of
    each component coefficient play the role of conditional mode and
    conditional variance.

Models fitted elsewhere can be described directly with
:meth:`MixedModelSummary.from_components`.

All arrays held by a summary are copies flagged read-only, so a single
summary can be shared by every worker thread without locking.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from typing_extensions import Self

from .exceptions import DegenerateCovariance, UnsupportedModelKind
from .families import LinearFamily, LogisticFamily, ResponseFamily, resolve_family

logger = logging.getLogger(__name__)

INTERCEPT_TERM = "(Intercept)"
"""Name of the constant column in fixed and random design matrices."""

INTERCEPT_NAMES: frozenset[str] = frozenset({INTERCEPT_TERM, "Intercept", "const"})
"""Column names treated as the constant term when building designs."""

_LEVEL_LABEL = re.compile(r"\[(?:T\.)?([^\[\]]+)\]$")


# ------------------------------------------------------------------ #
# Level-label helpers
# ------------------------------------------------------------------ #


def _level_strings(values: Any) -> pd.Series:
    """Render group labels as strings so that ``1``, ``1.0`` and ``"1"`` agree.

    Missing labels stay missing (``pd.NA``).
    """
    s = pd.Series(values).reset_index(drop=True)
    if pd.api.types.is_float_dtype(s):
        finite = s.dropna()
        if len(finite) and np.all(np.mod(finite.to_numpy(), 1) == 0):
            s = s.astype("Int64")
    return s.astype("string")


def _readonly(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=np.float64, copy=True)
    out.flags.writeable = False
    return out


# ------------------------------------------------------------------ #
# GroupingFactor
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class GroupingFactor:
    """Random-effect structure of one grouping factor.

    Attributes:
        name: Column name of the grouping factor in prediction data.
        levels: Level labels seen during fitting, in row order of
            *modes* and *cond_cov*.
        terms: Names of the random-effect design columns.
            ``"(Intercept)"`` denotes the constant column; any other
            name must be a column of the prediction data.
        modes: Conditional modes ``(G, q)``.
        cond_cov: Conditional covariance table ``(G, q, q)``.  A
            single pooled ``(q, q)`` matrix is broadcast to every level.
    """

    name: str
    levels: pd.Index
    terms: tuple[str, ...]
    modes: np.ndarray
    cond_cov: np.ndarray

    def __post_init__(self) -> None:
        levels = pd.Index(self.levels)
        if levels.has_duplicates:
            msg = f"Grouping factor '{self.name}' has duplicated levels."
            raise ValueError(msg)
        terms = tuple(str(t) for t in self.terms)
        modes = np.asarray(self.modes, dtype=np.float64)
        if modes.ndim == 1:
            modes = modes.reshape(-1, 1)
        G, q = modes.shape
        if G != len(levels):
            msg = (
                f"Grouping factor '{self.name}': modes have {G} rows but "
                f"{len(levels)} levels were given."
            )
            raise ValueError(msg)
        if q != len(terms):
            msg = (
                f"Grouping factor '{self.name}': modes have {q} columns but "
                f"{len(terms)} terms were given."
            )
            raise ValueError(msg)

        cov = np.asarray(self.cond_cov, dtype=np.float64)
        if cov.ndim == 0 and q == 1:
            cov = cov.reshape(1, 1)
        if cov.ndim == 1 and q == 1 and cov.shape[0] == G:
            cov = cov.reshape(G, 1, 1)
        if cov.shape == (q, q):
            cov = np.broadcast_to(cov, (G, q, q))
        if cov.shape != (G, q, q):
            msg = (
                f"Grouping factor '{self.name}': conditional covariance must "
                f"have shape ({q}, {q}) or ({G}, {q}, {q}), got {cov.shape}."
            )
            raise ValueError(msg)

        object.__setattr__(self, "levels", levels)
        object.__setattr__(self, "terms", terms)
        object.__setattr__(self, "modes", _readonly(modes))
        object.__setattr__(self, "cond_cov", _readonly(cov))
        object.__setattr__(self, "_lookup", pd.Index(_level_strings(levels)))

    @property
    def n_levels(self) -> int:
        return int(self.modes.shape[0])

    @property
    def q(self) -> int:
        return int(self.modes.shape[1])

    def level_index(self, labels: Any) -> np.ndarray:
        """Map group labels to row positions in :attr:`modes`.

        Labels are compared by their string form.  Unseen and missing
        labels map to ``-1``.

        Returns:
            Integer array ``(n,)``.
        """
        keys = _level_strings(labels)
        missing = keys.isna().to_numpy()
        idx = self._lookup.get_indexer(keys.fillna("").to_numpy(dtype=object))
        idx = np.asarray(idx, dtype=np.intp)
        idx[missing] = -1
        return idx


# ------------------------------------------------------------------ #
# MixedModelSummary
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class MixedModelSummary:
    """Everything the simulator reads from a fitted mixed model.

    Attributes:
        fixed_names: Fixed-effect (design column) names, length p.
        fixed_effects: Estimates β̂ ``(p,)``.
        fixed_cov: Covariance of β̂ ``(p, p)``.
        factors: Grouping factors (may be empty).
        family: Resolved response family.
        sigma2: Residual variance (linear family only).
        frame: Optional model frame, used by the data helpers in
            :mod:`merintervals.frames`.
    """

    fixed_names: tuple[str, ...]
    fixed_effects: np.ndarray
    fixed_cov: np.ndarray
    factors: tuple[GroupingFactor, ...]
    family: ResponseFamily
    sigma2: float | None = None
    frame: pd.DataFrame | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        names = tuple(str(n) for n in self.fixed_names)
        beta = np.asarray(self.fixed_effects, dtype=np.float64).ravel()
        cov = np.atleast_2d(np.asarray(self.fixed_cov, dtype=np.float64))
        p = beta.shape[0]
        if len(names) != p:
            msg = f"Got {len(names)} fixed-effect names for {p} estimates."
            raise ValueError(msg)
        if len(set(names)) != p:
            msg = f"Fixed-effect names must be unique, got {list(names)}."
            raise ValueError(msg)
        if cov.shape != (p, p):
            msg = f"Fixed-effect covariance must be ({p}, {p}), got {cov.shape}."
            raise ValueError(msg)
        factor_names = [f.name for f in self.factors]
        if len(set(factor_names)) != len(factor_names):
            msg = f"Grouping factor names must be unique, got {factor_names}."
            raise ValueError(msg)

        family = resolve_family(self.family)
        sigma2 = None if self.sigma2 is None else float(self.sigma2)
        if sigma2 is not None and not family.supports_resid_var:
            logger.debug(
                "Ignoring sigma2=%s for family '%s'.", sigma2, family.name
            )
            sigma2 = None

        object.__setattr__(self, "fixed_names", names)
        object.__setattr__(self, "fixed_effects", _readonly(beta))
        object.__setattr__(self, "fixed_cov", _readonly(cov))
        object.__setattr__(self, "factors", tuple(self.factors))
        object.__setattr__(self, "family", family)
        object.__setattr__(self, "sigma2", sigma2)

    @property
    def p(self) -> int:
        return int(self.fixed_effects.shape[0])

    @property
    def factor_names(self) -> list[str]:
        return [f.name for f in self.factors]

    def factor(self, name: str) -> GroupingFactor:
        """Return the grouping factor called *name*.

        Raises:
            KeyError: If the model has no such factor.
        """
        for f in self.factors:
            if f.name == name:
                return f
        raise KeyError(name)

    def ranef(self, name: str) -> pd.DataFrame:
        """Conditional modes of factor *name* as a ``(levels, terms)`` frame."""
        f = self.factor(name)
        return pd.DataFrame(f.modes, index=f.levels, columns=list(f.terms))

    @classmethod
    def from_components(
        cls,
        fixed_effects: Mapping[str, float] | pd.Series,
        fixed_cov: np.ndarray | pd.DataFrame,
        random_effects: Mapping[str, pd.DataFrame] | None = None,
        cond_cov: Mapping[str, Any] | None = None,
        *,
        family: str | ResponseFamily = "linear",
        sigma2: float | None = None,
        frame: pd.DataFrame | None = None,
    ) -> Self:
        """Build a summary from plain estimates.

        Args:
            fixed_effects: Fixed-effect estimates keyed by design-column
                name, in design order.
            fixed_cov: ``(p, p)`` covariance of the estimates.  A
                DataFrame is reordered to match *fixed_effects*.
            random_effects: ``{factor: DataFrame}`` of conditional modes,
                one row per level (the index) and one column per term.
            cond_cov: ``{factor: covariance}`` where the covariance is a
                pooled ``(q, q)`` array, a ``(G, q, q)`` array aligned
                with the rows of ``random_effects[factor]``, or a mapping
                from level label to ``(q, q)`` array.
            family: Response family name or instance.
            sigma2: Residual variance (linear models).
            frame: Optional model frame.

        Raises:
            ValueError: If a factor has modes but no covariance, or the
                shapes disagree.
        """
        fe = pd.Series(fixed_effects, dtype=np.float64)
        if isinstance(fixed_cov, pd.DataFrame):
            fixed_cov = fixed_cov.loc[fe.index, fe.index].to_numpy()

        random_effects = dict(random_effects or {})
        cond_cov = dict(cond_cov or {})
        factors: list[GroupingFactor] = []
        for name, modes in random_effects.items():
            modes = pd.DataFrame(modes)
            if name not in cond_cov:
                msg = f"No conditional covariance given for factor '{name}'."
                raise ValueError(msg)
            cov = cond_cov[name]
            if isinstance(cov, Mapping):
                cov = np.stack(
                    [np.atleast_2d(np.asarray(cov[lvl], dtype=np.float64))
                     for lvl in modes.index]
                )
            factors.append(
                GroupingFactor(
                    name=str(name),
                    levels=modes.index,
                    terms=tuple(str(c) for c in modes.columns),
                    modes=modes.to_numpy(dtype=np.float64),
                    cond_cov=np.asarray(cov, dtype=np.float64),
                )
            )
        return cls(
            fixed_names=tuple(str(n) for n in fe.index),
            fixed_effects=fe.to_numpy(),
            fixed_cov=np.asarray(fixed_cov, dtype=np.float64),
            factors=tuple(factors),
            family=family,
            sigma2=sigma2,
            frame=frame,
        )


# ------------------------------------------------------------------ #
# statsmodels adapters
# ------------------------------------------------------------------ #


def _infer_group_column(frame: pd.DataFrame | None, groups: Any) -> str | None:
    """Find the column of *frame* holding the grouping labels, if any."""
    if frame is None or groups is None:
        return None
    groups = np.asarray(groups)
    if len(frame) != len(groups):
        return None
    for col in frame.columns:
        values = frame[col].to_numpy()
        try:
            if np.array_equal(values, groups):
                return str(col)
        except (TypeError, ValueError):
            continue
    return None


def _from_mixedlm(results: Any, group_name: str | None) -> MixedModelSummary:
    """Summarise a statsmodels ``MixedLMResults``."""
    model = results.model
    if getattr(model, "k_vc", 0):
        msg = (
            "MixedLM models with variance components (vc_formula) are not "
            "supported; specify random effects through re_formula."
        )
        raise UnsupportedModelKind(msg)

    k_fe = int(model.k_fe)
    k_re = int(model.k_re)
    fixed_names = tuple(str(n) for n in list(model.exog_names)[:k_fe])
    beta = np.asarray(results.fe_params, dtype=np.float64)
    fixed_cov = np.asarray(results.cov_params(), dtype=np.float64)[:k_fe, :k_fe]

    exog_re = np.asarray(model.exog_re, dtype=np.float64)
    re_names = list(getattr(model.data, "exog_re_names", None) or [])[:k_re]
    re_names += [f"re{j}" for j in range(len(re_names), k_re)]
    terms = tuple(
        INTERCEPT_TERM if np.allclose(exog_re[:, j], 1.0) else str(re_names[j])
        for j in range(k_re)
    )

    try:
        modes_by_group = results.random_effects
        cov_by_group = results.random_effects_cov
    except (ValueError, np.linalg.LinAlgError) as exc:
        msg = f"Cannot extract conditional modes from the fitted model: {exc}"
        raise DegenerateCovariance(msg) from exc

    labels = list(model.group_labels)
    modes = np.vstack(
        [np.asarray(modes_by_group[g], dtype=np.float64)[:k_re] for g in labels]
    )
    cond_cov = np.stack(
        [
            np.atleast_2d(np.asarray(cov_by_group[g], dtype=np.float64))[:k_re, :k_re]
            for g in labels
        ]
    )

    frame = getattr(model.data, "frame", None)
    if group_name is None:
        group_name = _infer_group_column(frame, getattr(model, "groups", None))
    if group_name is None:
        group_name = "group"
        logger.debug("Grouping column not found; using default name 'group'.")

    factor = GroupingFactor(
        name=group_name,
        levels=pd.Index(labels),
        terms=terms,
        modes=modes,
        cond_cov=cond_cov,
    )
    return MixedModelSummary(
        fixed_names=fixed_names,
        fixed_effects=beta,
        fixed_cov=fixed_cov,
        factors=(factor,),
        family=LinearFamily(),
        sigma2=float(results.scale),
        frame=frame,
    )


def _vc_level_label(name: str) -> str:
    """``"C(village)[3]"`` → ``"3"``; names without brackets pass through."""
    m = _LEVEL_LABEL.search(name)
    return m.group(1) if m else name


def _from_bayes_mixed_glm(results: Any) -> MixedModelSummary:
    """Summarise a statsmodels ``BayesMixedGLMResults`` (binomial-logit only)."""
    model = results.model
    family = resolve_family(model.family)
    if not isinstance(family, LogisticFamily):
        msg = f"BayesMixedGLM family '{family.name}' is not supported."
        raise UnsupportedModelKind(msg)

    k_fep, k_vcp = int(model.k_fep), int(model.k_vcp)
    cp = getattr(results, "_cov_params", None)
    if cp is None:
        cp = results.cov_params()
    cp = np.asarray(cp, dtype=np.float64)
    if cp.ndim == 1:
        fixed_cov = np.diag(cp[:k_fep])
        vc_var = cp[k_fep + k_vcp:]
    else:
        fixed_cov = cp[:k_fep, :k_fep]
        vc_var = np.diag(cp)[k_fep + k_vcp:]

    fep_names = getattr(model, "fep_names", None) or list(model.exog_names)
    fixed_names = tuple(str(n) for n in list(fep_names)[:k_fep])
    vc_mean = np.asarray(results.vc_mean, dtype=np.float64)
    ident = np.asarray(model.ident)
    vcp_names = list(model.vcp_names)
    vc_names = [str(n) for n in model.vc_names]

    factors: list[GroupingFactor] = []
    for k, fname in enumerate(vcp_names):
        cols = np.flatnonzero(ident == k)
        factors.append(
            GroupingFactor(
                name=str(fname),
                levels=pd.Index([_vc_level_label(vc_names[j]) for j in cols]),
                terms=(INTERCEPT_TERM,),
                modes=vc_mean[cols].reshape(-1, 1),
                cond_cov=vc_var[cols].reshape(-1, 1, 1),
            )
        )
    return MixedModelSummary(
        fixed_names=fixed_names,
        fixed_effects=np.asarray(results.fe_mean, dtype=np.float64),
        fixed_cov=fixed_cov,
        factors=tuple(factors),
        family=family,
        sigma2=None,
        frame=getattr(model.data, "frame", None),
    )


def extract_model(
    model: Any,
    *,
    group_name: str | None = None,
) -> MixedModelSummary:
    """Return the read-only :class:`MixedModelSummary` of a fitted model.

    Args:
        model: A ``MixedModelSummary`` (returned unchanged), a
            statsmodels ``MixedLMResults`` or a statsmodels
            ``BayesMixedGLMResults`` with a binomial-logit family.
            Result wrappers are unwrapped automatically.
        group_name: Prediction-data column holding the grouping labels
            of a ``MixedLM`` model.  Inferred from the model frame when
            omitted, falling back to ``"group"``.

    Raises:
        UnsupportedModelKind: If the model type or family is not
            supported.
        DegenerateCovariance: If statsmodels cannot produce conditional
            modes because the random-effect covariance is singular.
    """
    if isinstance(model, MixedModelSummary):
        return model

    from statsmodels.genmod.bayes_mixed_glm import BayesMixedGLMResults
    from statsmodels.regression.mixed_linear_model import MixedLMResults

    results = getattr(model, "_results", model)
    if isinstance(results, MixedLMResults):
        summary = _from_mixedlm(results, group_name)
    elif isinstance(results, BayesMixedGLMResults):
        summary = _from_bayes_mixed_glm(results)
    else:
        msg = (
            f"Cannot introspect model of type {type(model).__name__}. "
            "Pass a statsmodels MixedLM or BinomialBayesMixedGLM result, "
            "or build a MixedModelSummary.from_components(...)."
        )
        raise UnsupportedModelKind(msg)

    logger.debug(
        "Extracted %s model: p=%d, factors=%s",
        summary.family.name,
        summary.p,
        {f.name: (f.n_levels, f.q) for f in summary.factors},
    )
    return summary


__all__ = [
    "INTERCEPT_NAMES",
    "INTERCEPT_TERM",
    "GroupingFactor",
    "MixedModelSummary",
    "extract_model",
]
