"""Shared fixtures for panel-lpiv tests."""

import numpy as np
import pandas as pd
import pytest

from panel_lpiv import PanelConfig, PanelTable


@pytest.fixture
def config() -> PanelConfig:
    return PanelConfig(entity_col="cbsa", time_col="ym")


@pytest.fixture
def simple_panel() -> pd.DataFrame:
    """Balanced panel with 5 entities, 12 months (2020-01 to 2020-12).

    Keys use the ``config`` fixture names; months are "YYYY-MM" labels.
    """
    rng = np.random.default_rng(42)
    rows = []
    for ent in ["10180", "10420", "10500", "10580", "10740"]:
        for month in range(1, 13):
            rows.append({
                "cbsa": ent,
                "ym": f"2020-{month:02d}",
                "price_chg": rng.normal(0.5, 0.2),
                "rate_gap": rng.normal(1.0, 0.5),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def controls_df() -> pd.DataFrame:
    """Second table for merge tests: one extra entity, months 2020-06 to 2021-03."""
    rng = np.random.default_rng(99)
    rows = []
    for ent in ["10180", "10420", "10500", "10580", "10740", "99999"]:
        for period in pd.period_range("2020-06", "2021-03", freq="M"):
            rows.append({
                "cbsa": ent,
                "ym": str(period),
                "unemployment_rate": rng.normal(5, 1),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def make_iv_panel():
    """Factory for a synthetic two-way FE panel with an endogenous regressor.

    ``y = beta * x + a_i + d_t + e``, ``x = pi * z + a_i + v``, and
    ``e = rho * v + noise``, so OLS of ``y`` on ``x`` is biased while ``z``
    is a valid instrument. ``z2`` is a second valid instrument and ``bad_z``
    enters ``y`` directly.
    """

    def _make(
        seed: int = 0,
        n_entities: int = 60,
        n_periods: int = 24,
        beta: float = 2.0,
        pi: float = 0.8,
        rho: float = 0.8,
    ) -> PanelTable:
        rng = np.random.default_rng(seed)
        ent = np.repeat(np.arange(n_entities), n_periods)
        t = np.tile(np.arange(n_periods), n_entities)
        n = len(ent)

        a = rng.normal(0, 1, n_entities)[ent]
        d = rng.normal(0, 1, n_periods)[t]
        z = rng.normal(0, 1, n)
        z2 = rng.normal(0, 1, n)
        bad_z = rng.normal(0, 1, n)
        v = rng.normal(0, 1, n)
        w = rng.normal(0, 1, n)

        x = pi * z + 0.5 * z2 + 0.5 * bad_z + a + v
        e = rho * v + rng.normal(0, 1, n)
        y = beta * x + 0.3 * w + a + d + e + 1.5 * bad_z

        df = pd.DataFrame({
            "entity_id": [f"e{i:03d}" for i in ent],
            "time_id": 600 + t,
            "y": y,
            "x": x,
            "z": z,
            "z2": z2,
            "bad_z": bad_z,
            "w": w,
            "y_clean": y - 1.5 * bad_z,
        })
        return PanelTable(df)

    return _make
