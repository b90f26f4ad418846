"""Explicit frequency conversion.

Merging never resamples. Weekly or daily series (e.g. the weekly mortgage
rate survey) are aggregated to months here before they become a table.
"""

from __future__ import annotations

import logging

import pandas as pd

from .._types import PanelConfig
from ..errors import SchemaError

logger = logging.getLogger(__name__)

AGGREGATIONS = ("mean", "median", "sum", "first", "last")


def to_monthly(
    df: pd.DataFrame,
    date_col: str,
    value_cols: list[str],
    entity_col: str | None = None,
    how: str = "mean",
    config: PanelConfig | None = None,
) -> pd.DataFrame:
    """Aggregate dated observations to the panel frequency.

    Parameters
    ----------
    df : pd.DataFrame
        Observations with a date column.
    date_col : str
        Column parseable by ``pd.to_datetime``.
    value_cols : list[str]
        Numeric columns to aggregate. Missing values are skipped.
    entity_col : str, optional
        Aggregate within entities. Without it the result is a single
        aggregate series.
    how : str
        One of ``mean``, ``median``, ``sum``, ``first``, ``last``.
    config : PanelConfig, optional
        Supplies the output time column name and the target frequency.

    Returns
    -------
    pd.DataFrame
        ``[entity_col,] config.time_col`` plus ``value_cols``, with period
        ordinals in the time column, sorted.
    """
    c = config or PanelConfig()
    if how not in AGGREGATIONS:
        raise ValueError(f"how must be one of {AGGREGATIONS}, got {how!r}")

    required = [date_col] + list(value_cols) + ([entity_col] if entity_col else [])
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise SchemaError(
            f"Missing required columns: {missing}. Available: {sorted(map(str, df.columns))}"
        )

    work = df[required].copy()
    work[date_col] = pd.to_datetime(work[date_col], errors="coerce")
    n_bad = int(work[date_col].isna().sum())
    if n_bad:
        logger.warning("to_monthly: dropping %s rows with unparseable dates", f"{n_bad:,}")
        work = work.dropna(subset=[date_col])
    for col in value_cols:
        work[col] = pd.to_numeric(work[col], errors="coerce")

    work[c.time_col] = pd.PeriodIndex(work[date_col].dt.to_period(c.freq)).asi8
    group_cols = ([entity_col] if entity_col else []) + [c.time_col]
    out = (
        work.groupby(group_cols, sort=True)[list(value_cols)]
        .agg(how)
        .reset_index()
    )
    out[c.time_col] = out[c.time_col].astype("int64")

    logger.info(
        "Resampled %s rows to %s %s-periods (%s)",
        f"{len(df):,}",
        f"{len(out):,}",
        c.freq,
        how,
    )
    return out
