"""Tests for prediction-data normalisation, including Polars input."""

import numpy as np
import pandas as pd
import pytest

from merintervals._compat import _ensure_pandas_df


class TestEnsurePandasDf:
    """Tests for the _ensure_pandas_df converter."""

    def test_pandas_passthrough(self):
        df = pd.DataFrame({"a": [1, 2, 3]})
        result = _ensure_pandas_df(df)
        assert result is df  # exact same object, no copy

    def test_series_is_one_row(self):
        row = pd.Series({"x": 1.5, "g": "a"})
        result = _ensure_pandas_df(row)
        assert result.shape == (1, 2)
        assert result.loc[result.index[0], "x"] == 1.5

    def test_sequence_of_mappings(self):
        rows = [{"x": 1.0, "g": "a"}, {"x": 2.0, "g": "b"}]
        result = _ensure_pandas_df(rows)
        assert list(result.columns) == ["x", "g"]
        assert result["x"].tolist() == [1.0, 2.0]

    def test_rejects_non_mapping_rows(self):
        with pytest.raises(TypeError, match="row 1 must be a mapping"):
            _ensure_pandas_df([{"x": 1.0}, [2.0]])

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="must be a pandas DataFrame"):
            _ensure_pandas_df(np.zeros((2, 2)))

    def test_rejects_string(self):
        with pytest.raises(TypeError):
            _ensure_pandas_df("x,g")

    def test_error_includes_name(self):
        with pytest.raises(TypeError, match="'newdata'"):
            _ensure_pandas_df({"a": 1}, name="newdata")


class TestPolars:
    """Polars frames are converted and accepted end to end."""

    @pytest.fixture(autouse=True)
    def _polars(self):
        self.pl = pytest.importorskip("polars")

    def test_polars_converted(self):
        pl_df = self.pl.DataFrame({"a": [1, 2, 3]})
        result = _ensure_pandas_df(pl_df)
        assert isinstance(result, pd.DataFrame)
        assert result["a"].tolist() == [1, 2, 3]

    def test_polars_lazyframe_collected_and_converted(self):
        lf = self.pl.DataFrame({"a": [1, 2, 3]}).lazy()
        result = _ensure_pandas_df(lf)
        assert result["a"].tolist() == [1, 2, 3]

    def test_results_match_pandas(self, linear_summary, newdata_known):
        from merintervals import predict_interval

        pl_df = self.pl.from_pandas(newdata_known)
        a = predict_interval(linear_summary, pl_df, n_sims=200, random_state=7)
        b = predict_interval(linear_summary, newdata_known, n_sims=200, random_state=7)
        np.testing.assert_array_equal(a.fit, b.fit)
        np.testing.assert_array_equal(a.lower, b.lower)
        np.testing.assert_array_equal(a.upper, b.upper)
