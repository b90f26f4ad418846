"""Within-entity variation analysis for fixed-effects estimation."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .._types import PanelConfig
from .coverage import _as_frame


class VariationAnalyzer:
    """Analyze the variation left for identification once fixed effects are absorbed.

    Entity fixed effects remove everything constant within an entity. A
    regressor or instrument with no within-entity variation is collinear
    with the entity effects, and a fixed-effect level observed once is a
    singleton that demeans to zero.

    Parameters
    ----------
    config : PanelConfig, optional
        Column name mapping.
    """

    def __init__(self, config: PanelConfig | None = None):
        self.config = config or PanelConfig()

    def analyze(self, data, column: str) -> pd.DataFrame:
        """Compute entity-level variation statistics for a column.

        Parameters
        ----------
        data : PanelTable or pd.DataFrame
            Panel data.
        column : str
            Column to analyze.

        Returns
        -------
        pd.DataFrame
            One row per entity with columns: n_obs, mean, std, min, max,
            n_unique, has_variation.
        """
        c = self.config
        df = _as_frame(data)
        if column not in df.columns:
            raise KeyError(f"Column '{column}' not found in data")
        grouped = df.groupby(c.entity_col)[column]

        stats = grouped.agg(["count", "mean", "std", "min", "max", "nunique"])
        stats.columns = ["n_obs", "mean", "std", "min", "max", "n_unique"]
        stats["has_variation"] = (stats["n_unique"] > 1).astype(int)

        return stats.reset_index()

    def within_share(self, data, column: str) -> float:
        """Share of the total variance of ``column`` that is within entities."""
        c = self.config
        df = _as_frame(data)[[c.entity_col, column]].dropna()
        total = float(((df[column] - df[column].mean()) ** 2).sum())
        if total == 0:
            return np.nan
        within = df[column] - df.groupby(c.entity_col)[column].transform("mean")
        return float((within ** 2).sum()) / total

    def usable_sample(self, data, column: str):
        """Keep entities with within-entity variation in ``column``.

        Returns the same type as ``data``.
        """
        c = self.config
        stats = self.analyze(data, column)
        keep = stats.loc[stats["has_variation"] == 1, c.entity_col]
        if hasattr(data, "filter_entities"):
            return data.filter_entities(keep)
        return data[data[c.entity_col].isin(keep)].copy()

    def singletons(self, data, group_col: str, columns: list[str] | None = None) -> pd.DataFrame:
        """Levels of ``group_col`` observed once among rows complete in ``columns``.

        Returns
        -------
        pd.DataFrame
            Columns ``group_col`` and ``n_obs`` (always 1), one row per singleton.
        """
        df = _as_frame(data)
        if columns:
            df = df.dropna(subset=list(columns))
        counts = df.groupby(group_col).size().rename("n_obs").reset_index()
        return counts[counts["n_obs"] == 1].reset_index(drop=True)

    def by_group(self, data, column: str, group_col: str) -> pd.DataFrame:
        """Variation breakdown by an entity-level attribute (e.g. a median split).

        Parameters
        ----------
        data : PanelTable or pd.DataFrame
            Panel data holding ``group_col`` constant within entity.
        column : str
            Column whose variation is summarized.
        group_col : str
            Entity attribute to aggregate by.

        Returns
        -------
        pd.DataFrame
            n_entities, n_with_variation, pct_with_variation and mean_std per group.
        """
        c = self.config
        df = _as_frame(data)
        stats = self.analyze(df, column)
        entity_group = df.drop_duplicates(c.entity_col)[[c.entity_col, group_col]]
        merged = stats.merge(entity_group, on=c.entity_col)

        return (
            merged.groupby(group_col)
            .agg(
                n_entities=(c.entity_col, "count"),
                n_with_variation=("has_variation", "sum"),
                pct_with_variation=("has_variation", "mean"),
                mean_std=("std", "mean"),
            )
            .reset_index()
        )
