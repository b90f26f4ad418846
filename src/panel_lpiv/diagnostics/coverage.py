"""Panel coverage analysis: gaps, consecutive periods, key mismatches."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .._types import PanelConfig


def _as_frame(data) -> pd.DataFrame:
    return data.to_frame() if hasattr(data, "to_frame") else data


class CoverageAnalyzer:
    """Analyze panel coverage: gaps, consecutive observations, key overlap.

    Parameters
    ----------
    config : PanelConfig, optional
        Column name mapping.
    """

    def __init__(self, config: PanelConfig | None = None):
        self.config = config or PanelConfig()

    def compute(self, data, column: str | None = None) -> pd.DataFrame:
        """Compute entity-level coverage statistics.

        Parameters
        ----------
        data : PanelTable or pd.DataFrame
            Panel data keyed by entity and period ordinal.
        column : str, optional
            Count a period as observed only where this column is non-missing.
            By default every row counts.

        Returns
        -------
        pd.DataFrame
            One row per entity with columns: n_periods, time_span,
            n_consecutive, n_gaps, coverage_rate, min_time, max_time.
        """
        c = self.config
        df = _as_frame(data)
        if column is not None:
            df = df[df[column].notna()]

        def _entity_stats(group: pd.DataFrame) -> pd.Series:
            times = np.sort(group[c.time_col].dropna().unique())
            if len(times) == 0:
                return pd.Series({
                    "n_periods": 0,
                    "time_span": 0,
                    "n_consecutive": 0,
                    "n_gaps": 0,
                    "coverage_rate": 0.0,
                    "min_time": np.nan,
                    "max_time": np.nan,
                })

            n_periods = len(times)
            time_span = int(times[-1] - times[0]) + 1
            diffs = np.diff(times)
            n_consecutive = int(np.sum(diffs == 1)) + 1 if len(diffs) > 0 else 1
            n_gaps = int(np.sum(diffs > 1))

            return pd.Series({
                "n_periods": n_periods,
                "time_span": time_span,
                "n_consecutive": n_consecutive,
                "n_gaps": n_gaps,
                "coverage_rate": round(n_periods / time_span, 4),
                "min_time": times[0],
                "max_time": times[-1],
            })

        return (
            df.groupby(c.entity_col)
            .apply(_entity_stats, include_groups=False)
            .reset_index()
        )

    def summary(self, data, column: str | None = None) -> pd.DataFrame:
        """Aggregate coverage statistics across all entities.

        Returns
        -------
        pd.DataFrame
            One-row DataFrame with mean, median, min, max for each stat.
        """
        coverage = self.compute(data, column=column)
        numeric_cols = ["n_periods", "time_span", "n_consecutive", "n_gaps", "coverage_rate"]

        stats = {}
        for col in numeric_cols:
            stats[f"{col}_mean"] = coverage[col].mean()
            stats[f"{col}_median"] = coverage[col].median()
            stats[f"{col}_min"] = coverage[col].min()
            stats[f"{col}_max"] = coverage[col].max()

        stats["n_entities"] = len(coverage)
        stats["n_balanced"] = int((coverage["coverage_rate"] == 1.0).sum())
        stats["pct_balanced"] = (
            round(stats["n_balanced"] / stats["n_entities"] * 100, 1)
            if stats["n_entities"] else 0.0
        )

        return pd.DataFrame([stats])

    def compare_keys(self, left, right) -> dict:
        """Entities, periods and rows present on only one side of a join.

        Returns
        -------
        dict
            Keys ``entities_left_only``, ``entities_right_only``,
            ``periods_left_only``, ``periods_right_only`` (sorted lists) and
            ``rows_left_only``, ``rows_right_only`` (row counts).
        """
        c = self.config
        lhs, rhs = _as_frame(left), _as_frame(right)

        left_entities = set(lhs[c.entity_col])
        right_entities = set(rhs[c.entity_col])
        left_periods = set(lhs[c.time_col])
        right_periods = set(rhs[c.time_col])

        keys_l = pd.MultiIndex.from_frame(lhs[c.keys])
        keys_r = pd.MultiIndex.from_frame(rhs[c.keys])

        return {
            "entities_left_only": sorted(left_entities - right_entities),
            "entities_right_only": sorted(right_entities - left_entities),
            "periods_left_only": sorted(left_periods - right_periods),
            "periods_right_only": sorted(right_periods - left_periods),
            "rows_left_only": int((~keys_l.isin(keys_r)).sum()),
            "rows_right_only": int((~keys_r.isin(keys_l)).sum()),
        }
