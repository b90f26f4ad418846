"""Tests for period-id helpers."""

import numpy as np
import pandas as pd
import pytest

from panel_lpiv import SchemaError
from panel_lpiv.panels import period_id, period_label, period_range, to_period_id


class TestToPeriodId:
    def test_month_labels(self):
        ids = to_period_id(pd.Series(["1970-01", "2020-01", "2020-12"]))
        assert ids.tolist() == [0, 600, 611]

    def test_datetimes_floor_to_month(self):
        ids = to_period_id(pd.Series(pd.to_datetime(["2020-01-31", "2020-02-01"])))
        assert ids.tolist() == [600, 601]

    def test_periods(self):
        values = pd.Series(pd.period_range("2020-01", periods=3, freq="M"))
        assert to_period_id(values).tolist() == [600, 601, 602]

    def test_period_objects(self):
        values = pd.Series([pd.Period("2020-03", freq="M")], dtype=object)
        assert to_period_id(values).tolist() == [602]

    def test_integers_pass_through(self):
        assert to_period_id(pd.Series([600, 601])).dtype == np.int64

    def test_integral_floats(self):
        assert to_period_id(pd.Series([600.0, 601.0])).tolist() == [600, 601]

    def test_fractional_floats_rejected(self):
        with pytest.raises(SchemaError):
            to_period_id(pd.Series([600.5]))

    def test_wrong_period_frequency_rejected(self):
        values = pd.Series(pd.period_range("2020-01", periods=3, freq="W"))
        with pytest.raises(SchemaError, match="Resample"):
            to_period_id(values)

    @pytest.mark.parametrize("bad", ["2020/01", "Jan 2020", "2020-1", "2020-13"])
    def test_ambiguous_strings_rejected(self, bad):
        with pytest.raises(SchemaError):
            to_period_id(pd.Series([bad]))

    def test_missing_rejected(self):
        with pytest.raises(SchemaError, match="missing"):
            to_period_id(pd.Series(["2020-01", None]))

    def test_empty(self):
        assert len(to_period_id(pd.Series([], dtype=object))) == 0


class TestPeriodHelpers:
    def test_scalar(self):
        assert period_id("2020-01") == 600
        assert period_id(600) == 600

    def test_labels(self):
        assert period_label([600, 611]) == ["2020-01", "2020-12"]

    def test_range_inclusive(self):
        assert period_range("2020-01", "2020-06").tolist() == list(range(600, 606))

    def test_range_reversed(self):
        with pytest.raises(ValueError):
            period_range("2020-06", "2020-01")
