"""Unit tests for PredictionIntervalEngine.

Pins the validation contract (every configuration error surfaces
before the sampler is touched), seed handling, chunking, threading and
cancellation.
"""

from __future__ import annotations

import threading

import numpy as np
import pandas as pd
import pytest

import merintervals.engine as engine_mod
from merintervals._context import SimulationContext
from merintervals.engine import PredictionIntervalEngine, _resolve_seed_sequence
from merintervals.exceptions import (
    DegenerateCovariance,
    MissingCovariate,
    SimulationCancelled,
    UnsupportedModelKind,
    UnsupportedOption,
)
from merintervals.introspect import MixedModelSummary
from merintervals.sampling import CoefficientSampler

# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #

_SEED = 42
_N_SIMS = 200  # small for speed; enough to test shapes


@pytest.fixture()
def counting_sampler(monkeypatch):
    """Replace the engine's sampler with a subclass that counts its use."""

    class CountingSampler(CoefficientSampler):
        constructed = 0
        draws = 0

        def __init__(self, *args, **kwargs):
            type(self).constructed += 1
            super().__init__(*args, **kwargs)

        def draw(self, *args, **kwargs):
            type(self).draws += 1
            return super().draw(*args, **kwargs)

    monkeypatch.setattr(engine_mod, "CoefficientSampler", CountingSampler)
    return CountingSampler


def _engine(summary, newdata, **kwargs):
    kwargs.setdefault("n_sims", _N_SIMS)
    kwargs.setdefault("random_state", _SEED)
    return PredictionIntervalEngine(summary, newdata, **kwargs)


# ------------------------------------------------------------------ #
# Fail-fast validation
# ------------------------------------------------------------------ #


class TestFailFast:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"level": 1.0},
            {"level": 0.0},
            {"n_sims": 0},
            {"n_sims": -5},
            {"n_sims": 2.5},
            {"n_sims": True},
            {"stat": "mode"},
            {"type": "odds"},
            {"which": "both"},
            {"quantile_method": "type7"},
            {"chunk_size": 0},
            {"batch_size": 0},
            {"n_jobs": 0},
        ],
    )
    def test_invalid_option_raises_before_sampling(
        self, kwargs, linear_summary, newdata_known, counting_sampler
    ):
        with pytest.raises(UnsupportedOption):
            _engine(linear_summary, newdata_known, **kwargs).run()
        assert counting_sampler.constructed == 0
        assert counting_sampler.draws == 0

    def test_logistic_resid_var_rejected_before_sampling(
        self, logistic_summary, newdata_known, counting_sampler
    ):
        with pytest.raises(UnsupportedOption, match="include_resid_var"):
            _engine(logistic_summary, newdata_known, include_resid_var=True)
        assert counting_sampler.draws == 0

    def test_missing_sigma2_rejected(self, newdata_known, counting_sampler):
        summary = MixedModelSummary.from_components({"(Intercept)": 1.0, "x": 0.0}, np.eye(2))
        with pytest.raises(UnsupportedOption, match="sigma2"):
            _engine(summary, newdata_known)
        assert counting_sampler.constructed == 0

    def test_random_without_factors(self, newdata_known):
        summary = MixedModelSummary.from_components(
            {"(Intercept)": 1.0, "x": 0.0}, np.eye(2), sigma2=1.0
        )
        with pytest.raises(UnsupportedOption, match="grouping factor"):
            _engine(summary, newdata_known, which="random")

    def test_missing_covariate_before_sampling(self, linear_summary, counting_sampler):
        with pytest.raises(MissingCovariate, match="'x'"):
            _engine(linear_summary, pd.DataFrame({"g": ["a", "b"]}))
        assert counting_sampler.constructed == 0

    def test_empty_newdata(self, linear_summary):
        with pytest.raises(ValueError, match="at least one observation"):
            _engine(linear_summary, pd.DataFrame({"x": [], "g": []}))

    def test_unsupported_model(self, newdata_known):
        with pytest.raises(UnsupportedModelKind):
            _engine(object(), newdata_known)

    def test_unknown_backend(self, linear_summary, newdata_known):
        with pytest.raises(ValueError, match="Unknown backend"):
            _engine(linear_summary, newdata_known, backend="torch")


# ------------------------------------------------------------------ #
# Construction and context
# ------------------------------------------------------------------ #


class TestConstruction:
    def test_context_populated(self, linear_summary, newdata_unseen):
        ctx = SimulationContext()
        eng = _engine(linear_summary, newdata_unseen, ctx=ctx)
        assert ctx.family_name == "linear"
        assert ctx.p == 2
        assert ctx.factor_levels == {"g": 5}
        assert ctx.n_obs == 5
        assert ctx.new_level_rows == {"g": 5}
        assert ctx.backend == "numpy"
        assert ctx.n_jobs == 1
        assert eng.ctx is ctx

    def test_type_alias_normalised(self, logistic_summary, newdata_known):
        eng = _engine(logistic_summary, newdata_known, type="response", include_resid_var=False)
        assert eng.scale == "probability"

    def test_batch_and_chunk_counts(self, linear_summary, newdata_known):
        eng = _engine(linear_summary, newdata_known, batch_size=64, chunk_size=2)
        eng.run()
        assert eng.ctx.n_batches == 4  # 64 + 64 + 64 + 8
        assert eng.ctx.n_chunks == 3

    def test_run_is_repeatable(self, linear_summary, newdata_known):
        eng = _engine(linear_summary, newdata_known)
        a, b = eng.run(), eng.run()
        np.testing.assert_array_equal(a.fit, b.fit)
        np.testing.assert_array_equal(a.upper, b.upper)


# ------------------------------------------------------------------ #
# Seeds
# ------------------------------------------------------------------ #


class TestSeeds:
    def test_int_and_seed_sequence_agree(self):
        a = _resolve_seed_sequence(5)
        b = _resolve_seed_sequence(np.random.SeedSequence(5))
        assert a.entropy == b.entropy

    def test_generator_consumed(self):
        gen = np.random.default_rng(3)
        a = _resolve_seed_sequence(gen)
        b = _resolve_seed_sequence(gen)
        assert a.entropy != b.entropy

    def test_none_gives_fresh_entropy(self):
        assert _resolve_seed_sequence(None).entropy != _resolve_seed_sequence(None).entropy

    def test_entropy_round_trip(self, linear_summary, newdata_known):
        first = _engine(linear_summary, newdata_known, random_state=None).run()
        again = _engine(
            linear_summary, newdata_known, random_state=first.context.seed_entropy
        ).run()
        np.testing.assert_array_equal(first.fit, again.fit)
        np.testing.assert_array_equal(first.lower, again.lower)


# ------------------------------------------------------------------ #
# Threading and backends
# ------------------------------------------------------------------ #


class TestParallel:
    @pytest.mark.parametrize("n_jobs", [2, -1])
    def test_bit_identical_across_n_jobs(self, linear_summary, newdata_known, n_jobs):
        serial = _engine(linear_summary, newdata_known, chunk_size=2).run()
        threaded = _engine(linear_summary, newdata_known, chunk_size=2, n_jobs=n_jobs).run()
        np.testing.assert_array_equal(serial.fit, threaded.fit)
        np.testing.assert_array_equal(serial.lower, threaded.lower)
        np.testing.assert_array_equal(serial.upper, threaded.upper)

    def test_chunk_size_does_not_change_row_order(self, linear_summary, newdata_known):
        res = _engine(linear_summary, newdata_known, chunk_size=1, include_resid_var=False).run()
        # One row per chunk; each fit still sits at its own row's mean.
        expected = 10.0 + 2.0 * newdata_known["x"].to_numpy() + np.array([-2, -1, 0, 1, 2])
        np.testing.assert_allclose(res.fit, expected, atol=0.3)

    def test_jax_forces_single_job(self, linear_summary, newdata_known):
        pytest.importorskip("jax")
        with pytest.warns(UserWarning, match="n_jobs is ignored"):
            eng = _engine(linear_summary, newdata_known, backend="jax", n_jobs=4)
        assert eng.ctx.n_jobs == 1

    def test_jax_matches_numpy(self, linear_summary, newdata_known):
        pytest.importorskip("jax")
        a = _engine(linear_summary, newdata_known, backend="numpy").run()
        b = _engine(linear_summary, newdata_known, backend="jax").run()
        np.testing.assert_allclose(a.fit, b.fit, rtol=1e-10)
        np.testing.assert_allclose(a.upper, b.upper, rtol=1e-10)


# ------------------------------------------------------------------ #
# Cancellation
# ------------------------------------------------------------------ #


class TestCancellation:
    def test_preset_event(self, linear_summary, newdata_known):
        event = threading.Event()
        event.set()
        with pytest.raises(SimulationCancelled):
            _engine(linear_summary, newdata_known, cancel_event=event).run()

    def test_cancel_between_batches(self, linear_summary, newdata_known, counting_sampler):
        event = threading.Event()
        original = counting_sampler.draw

        def draw_then_cancel(self, *args, **kwargs):
            batch = original(self, *args, **kwargs)
            if type(self).draws == 2:
                event.set()
            return batch

        counting_sampler.draw = draw_then_cancel
        with pytest.raises(SimulationCancelled):
            _engine(
                linear_summary, newdata_known, n_sims=1_000, batch_size=100,
                cancel_event=event,
            ).run()
        assert counting_sampler.draws == 2

    def test_unset_event_runs(self, linear_summary, newdata_known):
        res = _engine(linear_summary, newdata_known, cancel_event=threading.Event()).run()
        assert len(res) == 5


# ------------------------------------------------------------------ #
# Degenerate covariance
# ------------------------------------------------------------------ #


class TestDegenerate:
    def test_raised_from_run(self, newdata_known):
        summary = MixedModelSummary.from_components(
            {"(Intercept)": 1.0, "x": 0.0},
            np.array([[1.0, 0.0], [0.0, -0.5]]),
            sigma2=1.0,
        )
        eng = _engine(summary, newdata_known)
        with pytest.raises(DegenerateCovariance):
            eng.run()
