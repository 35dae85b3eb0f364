"""Tests for the backend configuration system."""

import os
import warnings

import pytest

import merintervals._config as _cfg
from merintervals._config import get_backend, set_backend, use_backend


@pytest.fixture(autouse=True)
def _clean_backend_state():
    """Reset override and env var around each test."""
    saved = _cfg._backend_override
    _cfg._backend_override = None
    os.environ.pop("MERINTERVALS_BACKEND", None)
    yield
    _cfg._backend_override = saved
    os.environ.pop("MERINTERVALS_BACKEND", None)


class TestGetBackend:
    """Tests for get_backend() resolution order."""

    def test_auto_detect_matches_importability(self):
        expected = "jax" if _cfg._jax_is_available() else "numpy"
        assert get_backend() == expected

    def test_auto_detect_without_jax(self, monkeypatch):
        monkeypatch.setattr(_cfg, "_jax_is_available", lambda: False)
        assert get_backend() == "numpy"

    def test_env_var_overrides_auto(self):
        os.environ["MERINTERVALS_BACKEND"] = "numpy"
        assert get_backend() == "numpy"

    def test_env_var_jax(self):
        os.environ["MERINTERVALS_BACKEND"] = "jax"
        assert get_backend() == "jax"

    def test_env_var_case_insensitive(self):
        os.environ["MERINTERVALS_BACKEND"] = "NumPy"
        assert get_backend() == "numpy"

    def test_unrecognised_env_var_ignored(self, monkeypatch):
        monkeypatch.setattr(_cfg, "_jax_is_available", lambda: False)
        os.environ["MERINTERVALS_BACKEND"] = "cupy"
        with pytest.warns(UserWarning, match="cupy"):
            assert get_backend() == "numpy"

    def test_env_var_auto_is_silent(self, monkeypatch):
        monkeypatch.setattr(_cfg, "_jax_is_available", lambda: False)
        os.environ["MERINTERVALS_BACKEND"] = "auto"
        with warnings.catch_warnings():
            warnings.simplefilter("error", UserWarning)
            assert get_backend() == "numpy"

    def test_programmatic_override_wins_over_env(self):
        os.environ["MERINTERVALS_BACKEND"] = "numpy"
        set_backend("jax")
        assert get_backend() == "jax"

    def test_auto_restores_default(self, monkeypatch):
        monkeypatch.setattr(_cfg, "_jax_is_available", lambda: False)
        set_backend("jax")
        assert get_backend() == "jax"
        set_backend("auto")
        assert get_backend() == "numpy"


class TestSetBackend:
    """Tests for set_backend() validation."""

    def test_accepts_valid_names(self):
        for name in ("jax", "numpy", "auto"):
            set_backend(name)

    def test_case_insensitive(self):
        set_backend("NUMPY")
        assert get_backend() == "numpy"

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            set_backend("tensorflow")


class TestUseBackend:
    def test_scoped_override(self):
        set_backend("jax")
        with use_backend("numpy") as active:
            assert active == "numpy"
            assert get_backend() == "numpy"
        assert get_backend() == "jax"

    def test_restored_after_error(self):
        with pytest.raises(RuntimeError), use_backend("numpy"):
            raise RuntimeError("boom")
        assert _cfg._backend_override is None

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown backend"), use_backend("cuda"):
            pass


class TestBackendIntegration:
    """set_backend('numpy') is honoured by predict_interval."""

    def test_numpy_backend_recorded_on_context(self, linear_summary, newdata_known):
        from merintervals import predict_interval

        set_backend("numpy")
        result = predict_interval(linear_summary, newdata_known, n_sims=20, random_state=1)
        assert result.context.backend == "numpy"

    def test_public_api_exports(self):
        import merintervals

        assert hasattr(merintervals, "get_backend")
        assert hasattr(merintervals, "set_backend")
