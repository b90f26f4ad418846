"""Tests for shock residualization."""

import numpy as np
import pandas as pd
import pytest

from panel_lpiv import IdentificationError, SchemaError
from panel_lpiv.instruments import cumulate, residualize


@pytest.fixture
def series():
    rng = np.random.default_rng(3)
    idx = [str(p) for p in pd.period_range("2019-01", periods=36, freq="M")]
    x = pd.Series(rng.normal(2.0, 0.5, 36), index=idx, name="gs10")
    y = 1.0 + 0.8 * x + pd.Series(rng.normal(0, 0.1, 36), index=idx)
    return y.rename("pmms"), x


class TestResidualize:
    def test_residual_orthogonal_to_controls(self, series):
        y, x = series
        shock = residualize(y, x)
        resid = shock.values.to_numpy()
        assert abs(resid.mean()) < 1e-10
        assert abs(np.dot(resid, x.to_numpy())) < 1e-8
        assert shock.coefficients["gs10"] == pytest.approx(0.8, abs=0.1)
        assert shock.n_obs == 36

    def test_indexed_by_period_ordinal(self, series):
        y, x = series
        shock = residualize(y, x)
        assert shock.values.index[0] == 588  # 2019-01

    def test_restricted_to_overlap(self, series):
        y, x = series
        shock = residualize(y.iloc[3:], x.iloc[:30])
        assert shock.n_obs == 27
        assert shock.values.index.min() == 591
        assert shock.values.index.max() == 588 + 29

    def test_gaps_are_missing_not_extrapolated(self, series):
        y, x = series
        y = y.copy()
        y.iloc[10] = np.nan
        shock = residualize(y, x)
        assert np.isnan(shock.values.iloc[10])
        assert shock.n_obs == 35

    def test_multiple_controls(self, series):
        y, x = series
        controls = pd.DataFrame({"gs10": x, "trend": np.arange(36.0)}, index=x.index)
        shock = residualize(y, controls)
        assert list(shock.coefficients.index) == ["const", "gs10", "trend"]

    def test_collinear_controls(self, series):
        y, x = series
        controls = pd.DataFrame({"a": x, "b": 2 * x}, index=x.index)
        with pytest.raises(IdentificationError):
            residualize(y, controls)

    def test_too_short(self, series):
        y, x = series
        with pytest.raises(IdentificationError):
            residualize(y.iloc[:2], x.iloc[:2])

    def test_duplicate_periods(self, series):
        y, x = series
        y2 = pd.concat([y, y.iloc[:1]])
        with pytest.raises(SchemaError):
            residualize(y2, x)

    def test_unknown_policy(self, series):
        y, x = series
        with pytest.raises(ValueError):
            residualize(y, x, missing_policy="interpolate")


class TestCumulate:
    @pytest.fixture
    def gappy(self) -> pd.Series:
        return pd.Series([1.0, 2.0, np.nan, 3.0], index=[600, 601, 602, 603])

    def test_zero_policy(self, gappy):
        assert cumulate(gappy, "zero").tolist() == [1.0, 3.0, 3.0, 6.0]

    def test_propagate_policy(self, gappy):
        out = cumulate(gappy, "propagate")
        assert out.iloc[:2].tolist() == [1.0, 3.0]
        assert out.iloc[2:].isna().all()

    def test_sorted_by_period(self):
        s = pd.Series([2.0, 1.0], index=[601, 600])
        assert cumulate(s).tolist() == [1.0, 3.0]

    def test_shock_carries_policy(self, series):
        y, x = series
        y = y.copy()
        y.iloc[5] = np.nan
        shock = residualize(y, x, missing_policy="propagate")
        assert shock.missing_policy == "propagate"
        assert shock.cumulative.iloc[5:].isna().all()
