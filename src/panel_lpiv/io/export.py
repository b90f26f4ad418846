"""Tabular export and reload of instrument panels and impulse responses."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .._types import PanelConfig, RegressionSpec
from ..estimation.results import ImpulseResponseTable
from ..panels.table import PanelTable

logger = logging.getLogger(__name__)


def _as_frame(data, labels: bool = True) -> pd.DataFrame:
    """DataFrame view of a PanelTable, ImpulseResponseTable or DataFrame."""
    if isinstance(data, PanelTable):
        return data.to_frame(labels=labels)
    if isinstance(data, ImpulseResponseTable):
        return data.to_frame()
    if isinstance(data, pd.DataFrame):
        return data.copy()
    raise TypeError(f"Cannot export {type(data).__name__}")


def _flags_as_boolean(df: pd.DataFrame) -> pd.DataFrame:
    """Cast object columns holding only booleans and missing values to ``"boolean"``."""
    for col in df.columns:
        if df[col].dtype != object:
            continue
        present = df[col].dropna()
        if len(present) and all(isinstance(v, (bool, np.bool_)) for v in present):
            df[col] = df[col].astype("boolean")
    return df


def _stringify_objects(df: pd.DataFrame) -> pd.DataFrame:
    """Render mixed object columns (flags, reasons) as strings, missing as empty."""
    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].map(lambda v: "" if v is None or v != v else str(v))
    return df


def to_parquet(data, path: str | Path, labels: bool = True, **kwargs) -> None:
    """Export a panel or impulse-response table to parquet.

    Parameters
    ----------
    data : PanelTable, ImpulseResponseTable or pd.DataFrame
        Table to write.
    path : str or Path
        Output file path.
    labels : bool
        Write period ids of a PanelTable as ``"YYYY-MM"`` labels.
    **kwargs
        Passed to ``DataFrame.to_parquet()``.
    """
    df = _stringify_objects(_flags_as_boolean(_as_frame(data, labels)))
    df.to_parquet(path, index=False, **kwargs)
    logger.info("Exported %s rows to %s", f"{len(df):,}", path)


def to_csv(data, path: str | Path, labels: bool = True, **kwargs) -> None:
    """Export a panel or impulse-response table to CSV.

    Floats are written with full precision so that reloading with
    :func:`read_impulse_response` or :func:`read_instrument_panel` gives
    back identical values.

    Parameters
    ----------
    data : PanelTable, ImpulseResponseTable or pd.DataFrame
        Table to write.
    path : str or Path
        Output file path.
    labels : bool
        Write period ids of a PanelTable as ``"YYYY-MM"`` labels.
    **kwargs
        Passed to ``DataFrame.to_csv()``.
    """
    df = _as_frame(data, labels)
    df.to_csv(path, index=False, **kwargs)
    logger.info("Exported %s rows to %s", f"{len(df):,}", path)


def to_stata(data, path: str | Path, labels: bool = True, **kwargs) -> None:
    """Export a panel or impulse-response table to Stata .dta.

    Parameters
    ----------
    data : PanelTable, ImpulseResponseTable or pd.DataFrame
        Table to write.
    path : str or Path
        Output file path.
    labels : bool
        Write period ids of a PanelTable as ``"YYYY-MM"`` labels.
    **kwargs
        Passed to ``DataFrame.to_stata()``.
    """
    df = _stringify_objects(_as_frame(data, labels))

    # Stata column names max 32 chars
    rename = {}
    for col in df.columns:
        if len(col) > 32:
            rename[col] = col[:32]
    if rename:
        logger.info("Truncating column names for Stata: %s", rename)
        df = df.rename(columns=rename)

    df.to_stata(path, write_index=False, **kwargs)
    logger.info("Exported %s rows to %s", f"{len(df):,}", path)


def _read(path: str | Path, dtype: dict | None = None) -> pd.DataFrame:
    path = Path(path)
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path, float_precision="round_trip", dtype=dtype)


def read_impulse_response(
    path: str | Path,
    spec: RegressionSpec | None = None,
    label: str | None = None,
) -> ImpulseResponseTable:
    """Reload an impulse-response table written by :func:`to_csv` or :func:`to_parquet`."""
    df = _read(path, dtype={"term": str, "status": str, "vcov_type": str})
    logger.info("Loaded %s horizons from %s", f"{len(df):,}", path)
    return ImpulseResponseTable.from_frame(df, spec=spec, label=label)


def read_instrument_panel(path: str | Path, config: PanelConfig | None = None) -> PanelTable:
    """Reload an instrument panel; entity ids are kept as strings."""
    c = config or PanelConfig()
    df = _read(path, dtype={c.entity_col: str})
    return PanelTable(df, config=c)
