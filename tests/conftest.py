"""Shared fixtures: synthetic model summaries, prediction rows and
statsmodels fits."""

from __future__ import annotations

import warnings

import numpy as np
import pandas as pd
import pytest

import merintervals._config as _cfg
from merintervals.introspect import MixedModelSummary

LEVELS = ["a", "b", "c", "d", "e"]


@pytest.fixture(autouse=True)
def _numpy_backend(monkeypatch):
    """Run every test on the NumPy backend unless it asks otherwise."""
    monkeypatch.setattr(_cfg, "_backend_override", "numpy")


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def linear_summary():
    """Random-intercept linear model: 2 fixed effects, 5 levels, σ² = 1."""
    return MixedModelSummary.from_components(
        fixed_effects={"(Intercept)": 10.0, "x": 2.0},
        fixed_cov=np.array([[0.25, 0.01], [0.01, 0.04]]),
        random_effects={
            "g": pd.DataFrame({"(Intercept)": [-2.0, -1.0, 0.0, 1.0, 2.0]}, index=LEVELS)
        },
        cond_cov={"g": np.array([[0.3]])},
        family="linear",
        sigma2=1.0,
    )


@pytest.fixture()
def slope_summary():
    """Linear model with a correlated random intercept and slope on ``x``."""
    modes = pd.DataFrame(
        {"(Intercept)": [-1.0, 0.0, 1.0], "x": [0.5, 0.0, -0.5]},
        index=["s1", "s2", "s3"],
    )
    return MixedModelSummary.from_components(
        fixed_effects={"(Intercept)": 1.0, "x": 0.5},
        fixed_cov=np.diag([0.04, 0.01]),
        random_effects={"site": modes},
        cond_cov={"site": np.array([[0.2, 0.05], [0.05, 0.1]])},
        family="linear",
        sigma2=0.5,
    )


@pytest.fixture()
def logistic_summary():
    """Random-intercept logistic model with per-level conditional variances."""
    return MixedModelSummary.from_components(
        fixed_effects={"(Intercept)": -0.5, "x": 1.0},
        fixed_cov=np.diag([0.04, 0.01]),
        random_effects={
            "g": pd.DataFrame({"(Intercept)": [-1.0, -0.5, 0.0, 0.5, 1.0]}, index=LEVELS)
        },
        cond_cov={"g": np.array([0.1, 0.12, 0.08, 0.1, 0.2])},
        family="logistic",
    )


@pytest.fixture()
def newdata_known():
    return pd.DataFrame({"x": [-1.0, 0.0, 0.5, 1.0, 2.0], "g": LEVELS})


@pytest.fixture()
def newdata_unseen():
    return pd.DataFrame({"x": [-1.0, 0.0, 0.5, 1.0, 2.0], "g": ["zzz"] * 5})


@pytest.fixture(scope="session")
def sleep_data():
    """Clustered data: 10 groups x 20 rows, y = 1 + 2x + u_g + e."""
    rng = np.random.default_rng(42)
    n_groups, n_per = 10, 20
    g = np.repeat(np.arange(n_groups), n_per)
    x = rng.standard_normal(n_groups * n_per)
    u = rng.normal(0.0, 1.5, size=n_groups)
    y = 1.0 + 2.0 * x + u[g] + rng.normal(0.0, 0.5, size=g.size)
    logit = -0.3 + 1.2 * x + u[g] / 2
    yb = rng.binomial(1, 1.0 / (1.0 + np.exp(-logit)))
    return pd.DataFrame({"y": y, "yb": yb, "x": x, "g": g})


@pytest.fixture(scope="session")
def mixedlm_fit(sleep_data):
    import statsmodels.formula.api as smf

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return smf.mixedlm("y ~ x", sleep_data, groups="g").fit()


@pytest.fixture(scope="session")
def glmm_fit(sleep_data):
    from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM

    model = BinomialBayesMixedGLM.from_formula("yb ~ x", {"g": "0 + C(g)"}, sleep_data)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return model.fit_vb()
