"""Tests for robustness variants."""

import numpy as np
import pandas as pd
import pytest

from panel_lpiv import PanelTable, RegressionSpec
from panel_lpiv.estimation import (
    fit_variants,
    placebo_permute,
    run_variants,
    split_by_median,
    stack_irfs,
    trim_within_entity,
)

FE = ["entity_id", "time_id"]


@pytest.fixture
def base_spec() -> RegressionSpec:
    return RegressionSpec(
        outcome="y", endogenous="x", instruments="z", controls="w",
        fixed_effects=FE, cluster="entity_id",
    )


@pytest.fixture
def small() -> PanelTable:
    df = pd.DataFrame({
        "entity_id": ["A"] * 5 + ["B"] * 5 + ["C"] * 5 + ["D"] * 5,
        "time_id": list(range(600, 605)) * 4,
        "v": [1, 2, 3, 4, 5, 2, 2, 2, 2, 2, 10, 11, 12, 13, 14, 0, 0, 0, 0, 100],
    })
    return PanelTable(df)


class TestRunVariants:
    def test_runs_each_variant(self, make_iv_panel, base_spec):
        panel = make_iv_panel()
        variants = {
            "baseline": (base_spec, panel),
            "no_controls": (RegressionSpec(
                outcome="y", endogenous="x", instruments="z",
                fixed_effects=FE, cluster="entity_id",
            ), panel),
        }
        irfs = run_variants(variants, horizons=range(3))
        assert list(irfs) == ["baseline", "no_controls"]
        assert irfs["baseline"].label == "baseline"
        assert len(irfs["no_controls"]) == 3

    def test_parallel_matches_serial(self, make_iv_panel, base_spec):
        variants = {f"s{s}": (base_spec, make_iv_panel(seed=s)) for s in range(3)}
        serial = run_variants(variants, horizons=range(2))
        parallel = run_variants(variants, horizons=range(2), max_workers=3)
        for label in variants:
            np.testing.assert_array_equal(serial[label].coefficients, parallel[label].coefficients)

    def test_stack(self, make_iv_panel, base_spec):
        panel = make_iv_panel()
        irfs = run_variants({"a": (base_spec, panel), "b": (base_spec, panel)}, horizons=range(2))
        long = stack_irfs(irfs)
        assert list(long.columns[:2]) == ["variant", "horizon"]
        assert len(long) == 4
        assert set(long["variant"]) == {"a", "b"}

    def test_stack_empty(self):
        assert stack_irfs({}).empty


class TestFitVariants:
    def test_failure_is_isolated(self, make_iv_panel, base_spec):
        panel = make_iv_panel()
        broken = panel.assign(one=np.ones(len(panel)))
        bad_spec = RegressionSpec(
            outcome="y", endogenous="x", instruments="z", fixed_effects=FE, cluster="one"
        )
        table = fit_variants({"baseline": (base_spec, panel), "one_cluster": (bad_spec, broken)})
        assert list(table["variant"]) == ["baseline", "one_cluster"]
        assert table.loc[0, "status"] == "ok"
        assert table.loc[1, "status"].startswith("failed: ")
        assert np.isnan(table.loc[1, "coefficient"])
        assert "horizon" not in table.columns


class TestSubsamples:
    def test_split_by_median(self, small):
        high, low = split_by_median(small, "v")
        # Entity means: A=3, B=2, C=12, D=20 -> median 7.5
        assert set(high.entities) == {"C", "D"}
        assert set(low.entities) == {"A", "B"}

    def test_split_ties_go_low(self):
        df = pd.DataFrame({"entity_id": ["A", "B", "C"], "time_id": [600] * 3, "v": [1.0, 2.0, 3.0]})
        high, low = split_by_median(PanelTable(df), "v")
        assert set(high.entities) == {"C"}
        assert set(low.entities) == {"A", "B"}

    def test_split_unknown_column(self, small):
        with pytest.raises(KeyError):
            split_by_median(small, "nope")

    def test_trim_within_entity(self, small):
        out = trim_within_entity(small, "v", 0.05, 0.95)
        df = out.to_frame()
        assert df.loc[df["entity_id"] == "A", "v"].tolist() == [2.0, 3.0, 4.0]
        # No value of a constant entity is strictly inside its band.
        assert "B" not in set(df["entity_id"])
        assert "D" not in set(df["entity_id"])

    def test_trim_bounds_checked(self, small):
        with pytest.raises(ValueError):
            trim_within_entity(small, "v", 0.9, 0.1)


class TestPlacebo:
    def test_same_seed_same_permutation(self, small):
        a = placebo_permute(small, "v", seed=3).column("v_placebo")
        b = placebo_permute(small, "v", seed=3).column("v_placebo")
        pd.testing.assert_series_equal(a, b)

    def test_is_a_permutation(self, small):
        out = placebo_permute(small, "v", seed=1, name="shuffled")
        assert sorted(out.column("shuffled")) == sorted(small.column("v"))

    def test_within_entity(self, small):
        out = placebo_permute(small, "v", seed=2, within_entity=True).to_frame()
        for ent, group in out.groupby("entity_id"):
            assert sorted(group["v_placebo"]) == sorted(group["v"])

    def test_seed_required(self, small):
        with pytest.raises(TypeError):
            placebo_permute(small, "v")
