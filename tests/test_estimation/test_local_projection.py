"""Tests for LocalProjectionRunner."""

import threading

import numpy as np
import pandas as pd
import pytest

from panel_lpiv import (
    ImpulseResponseTable,
    LocalProjectionRunner,
    PanelTable,
    RegressionSpec,
    SchemaError,
)

FE = ["entity_id", "time_id"]


@pytest.fixture
def lp_spec() -> RegressionSpec:
    return RegressionSpec(
        outcome="y", endogenous="x", instruments="z", controls="w",
        fixed_effects=FE, cluster="entity_id",
    )


class TestHorizonSample:
    @pytest.fixture
    def short(self) -> PanelTable:
        df = pd.DataFrame({
            "entity_id": ["A"] * 4 + ["B"] * 3,
            "time_id": [600, 601, 602, 603, 600, 601, 602],
            "y": [1.0, 2.0, 3.0, 4.0, 10.0, 20.0, 30.0],
        })
        return PanelTable(df)

    def test_level_outcome(self, short):
        spec = RegressionSpec(outcome="y", controls="x", vcov="naive")
        sample, h_spec = LocalProjectionRunner().horizon_sample(spec, short, 2)
        assert h_spec.outcome == "y_h2"
        values = sample.column("y_h2").to_numpy()
        np.testing.assert_array_equal(values, [3.0, 4.0, np.nan, np.nan, 30.0, np.nan, np.nan])

    def test_cumulative_outcome(self, short):
        spec = RegressionSpec(outcome="y", controls="x", vcov="naive")
        runner = LocalProjectionRunner(cumulative=True)
        sample, h_spec = runner.horizon_sample(spec, short, 1)
        assert h_spec.outcome == "y_cum1"
        values = sample.column("y_cum1").to_numpy()
        np.testing.assert_array_equal(values, [3.0, 5.0, 7.0, np.nan, 30.0, 50.0, np.nan])

    def test_other_columns_anchored_at_t(self, short):
        spec = RegressionSpec(outcome="y", controls="x", vcov="naive")
        sample, _ = LocalProjectionRunner().horizon_sample(spec, short, 1)
        np.testing.assert_array_equal(sample.column("y").to_numpy(), short.column("y").to_numpy())


class TestRun:
    def test_one_result_per_horizon(self, make_iv_panel, lp_spec):
        irf = LocalProjectionRunner().run(lp_spec, make_iv_panel(), horizons=range(4), label="base")
        assert isinstance(irf, ImpulseResponseTable)
        assert irf.horizons == [0, 1, 2, 3]
        assert irf.label == "base"
        assert not irf.failed
        assert [r.n_obs for r in irf] == [60 * (24 - h) for h in range(4)]

    def test_horizon_zero_matches_direct_fit(self, make_iv_panel, lp_spec):
        panel = make_iv_panel()
        runner = LocalProjectionRunner()
        irf = runner.run(lp_spec, panel, horizons=[0])
        assert irf[0].coefficient == pytest.approx(runner.estimator.fit(lp_spec, panel).coefficient)

    def test_parallel_is_bit_identical(self, make_iv_panel, lp_spec):
        panel = make_iv_panel()
        serial = LocalProjectionRunner().run(lp_spec, panel, horizons=range(6))
        parallel = LocalProjectionRunner(max_workers=4).run(lp_spec, panel, horizons=range(6))
        np.testing.assert_array_equal(serial.coefficients, parallel.coefficients)
        np.testing.assert_array_equal(
            serial.to_frame()["std_error"].to_numpy(), parallel.to_frame()["std_error"].to_numpy()
        )

    def test_horizon_independence(self, make_iv_panel, lp_spec):
        # Outcome observed 5 months past the regressors: those rows feed only h=5.
        panel = make_iv_panel(n_periods=29)
        t = panel.to_frame()["time_id"].to_numpy()
        late = t >= 600 + 24
        cols = {c: np.where(late, np.nan, panel.column(c).to_numpy()) for c in ["x", "z", "w"]}
        panel = panel.assign(**cols)

        full = LocalProjectionRunner().run(lp_spec, panel, horizons=range(6))
        trimmed = LocalProjectionRunner().run(
            lp_spec, panel.filter_time_range(end=600 + 27), horizons=range(6)
        )
        np.testing.assert_array_equal(full.coefficients[:5], trimmed.coefficients[:5])
        assert full[5].n_obs != trimmed[5].n_obs

    def test_subset_of_horizons_unchanged(self, make_iv_panel, lp_spec):
        panel = make_iv_panel()
        a = LocalProjectionRunner().run(lp_spec, panel, horizons=[0, 1, 2, 8])
        b = LocalProjectionRunner().run(lp_spec, panel, horizons=[0, 1, 2])
        np.testing.assert_array_equal(a.coefficients[:3], b.coefficients)

    def test_failed_horizon_recorded(self, make_iv_panel, lp_spec):
        panel = make_iv_panel(n_periods=6)
        irf = LocalProjectionRunner().run(lp_spec, panel, horizons=range(8))
        assert len(irf) == 8
        # h=5 leaves one period: every entity is a singleton, too few rows for the FE.
        assert set(irf.failed) == {5, 6, 7}
        assert "observations" in irf.failed[5]
        assert "No complete observations" in irf.failed[6]
        df = irf.to_frame()
        assert df.loc[df["horizon"] == 6, "status"].iloc[0].startswith("failed: ")
        assert np.isnan(df.loc[df["horizon"] == 6, "coefficient"].iloc[0])
        assert (df.loc[df["horizon"] < 5, "status"] == "ok").all()

    def test_schema_error_propagates(self, make_iv_panel, lp_spec):
        with pytest.raises(SchemaError):
            LocalProjectionRunner().run(lp_spec.with_outcome("nope"), make_iv_panel(), horizons=[0])

    def test_cancel(self, make_iv_panel, lp_spec):
        cancel = threading.Event()
        cancel.set()
        irf = LocalProjectionRunner().run(lp_spec, make_iv_panel(), horizons=range(3), cancel=cancel)
        assert irf.failed == {0: "cancelled", 1: "cancelled", 2: "cancelled"}

    def test_accepts_dataframe(self, make_iv_panel, lp_spec):
        panel = make_iv_panel()
        a = LocalProjectionRunner().run(lp_spec, panel.to_frame(), horizons=[1])
        b = LocalProjectionRunner().run(lp_spec, panel, horizons=[1])
        assert a[1].coefficient == b[1].coefficient

    def test_invalid_horizons(self, make_iv_panel, lp_spec):
        with pytest.raises(ValueError):
            LocalProjectionRunner().run(lp_spec, make_iv_panel(), horizons=[-1, 0])
        with pytest.raises(ValueError):
            LocalProjectionRunner().run(lp_spec, make_iv_panel(), horizons=[1, 1])
