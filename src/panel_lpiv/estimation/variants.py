"""Robustness variants: many specs and subsamples through one engine.

A variant is a label mapped to a ``(spec, table)`` pair. Subgroup splits,
trimmed samples and placebo columns are built here as new tables; they then
run through the same estimator or runner as the baseline.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Mapping

import numpy as np
import pandas as pd

from .._types import RegressionSpec
from ..errors import IdentificationError
from ..panels.table import PanelTable
from .iv import IVEstimator
from .local_projection import LocalProjectionRunner
from .results import IRF_COLUMNS, EstimationResult, ImpulseResponseTable

logger = logging.getLogger(__name__)

Variants = Mapping[str, tuple[RegressionSpec, PanelTable]]


def run_variants(
    variants: Variants,
    horizons: Iterable[int] = range(0, 13),
    runner: LocalProjectionRunner | None = None,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, ImpulseResponseTable]:
    """Run a local projection per variant.

    Parameters
    ----------
    variants : mapping of str to (RegressionSpec, PanelTable)
        Label to spec and data.
    horizons : iterable of int
        Shared by every variant.
    runner : LocalProjectionRunner, optional
        Defaults to a serial runner with a default estimator.
    max_workers : int, optional
        Run variants concurrently on a thread pool of this size.
    cancel : threading.Event, optional
        Passed to each run.

    Returns
    -------
    dict[str, ImpulseResponseTable]
        In the order of ``variants``.

    Example
    -------
    >>> irfs = run_variants({"baseline": (spec, panel), "no_controls": (bare, panel)})
    >>> stack_irfs(irfs)
    """
    runner = runner or LocalProjectionRunner()
    horizons = list(horizons)

    def run_one(label: str) -> ImpulseResponseTable:
        spec, table = variants[label]
        return runner.run(spec, table, horizons=horizons, label=label, cancel=cancel)

    labels = list(variants)
    if max_workers is None or len(labels) < 2:
        tables = [run_one(label) for label in labels]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            tables = list(pool.map(run_one, labels))
    return dict(zip(labels, tables))


def fit_variants(variants: Variants, estimator: IVEstimator | None = None) -> pd.DataFrame:
    """One fit per variant, stacked into a tidy robustness table.

    A variant that cannot be identified becomes a ``"failed: <reason>"``
    row; the others are unaffected.
    """
    estimator = estimator or IVEstimator()
    rows = []
    for label, (spec, table) in variants.items():
        try:
            result = estimator.fit(spec, table)
        except IdentificationError as exc:
            logger.warning("Variant %s failed: %s", label, exc)
            result = EstimationResult.failed(spec.focal, str(exc), spec=spec, vcov_type=spec.vcov)
        row = result.to_row()
        del row["horizon"]
        rows.append({"variant": label, "outcome": spec.outcome, **row})
    columns = ["variant", "outcome"] + [col for col in IRF_COLUMNS if col != "horizon"]
    return pd.DataFrame(rows, columns=columns)


def stack_irfs(irfs: Mapping[str, ImpulseResponseTable]) -> pd.DataFrame:
    """Long table of several impulse responses with a leading ``variant`` column."""
    frames = []
    for label, irf in irfs.items():
        df = irf.to_frame()
        df.insert(0, "variant", label)
        frames.append(df)
    if not frames:
        return pd.DataFrame(columns=["variant"] + IRF_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def split_by_median(table: PanelTable, column: str) -> tuple[PanelTable, PanelTable]:
    """Split entities at the median of their average ``column``.

    Returns
    -------
    (high, low) : tuple[PanelTable, PanelTable]
        ``high`` holds entities strictly above the median, ``low`` the rest.
        Entities with no observed value of ``column`` are in neither.
    """
    entity = table.config.entity_col
    df = table.to_frame()
    if column not in df.columns:
        raise KeyError(f"Column '{column}' not found in table")
    averages = df.groupby(entity)[column].mean().dropna()
    if averages.empty:
        raise IdentificationError(f"No observed values of {column!r} to split on")
    median = averages.median()
    high = averages.index[averages > median]
    low = averages.index[averages <= median]
    logger.info(
        "Median split on %s (median %.4g): %s high, %s low entities",
        column,
        median,
        f"{len(high):,}",
        f"{len(low):,}",
    )
    return table.filter_entities(high), table.filter_entities(low)


def trim_within_entity(
    table: PanelTable,
    column: str,
    lower: float = 0.05,
    upper: float = 0.95,
) -> PanelTable:
    """Keep rows strictly inside each entity's ``[lower, upper]`` quantile band of ``column``."""
    if not 0 <= lower < upper <= 1:
        raise ValueError(f"Need 0 <= lower < upper <= 1, got ({lower}, {upper})")
    entity = table.config.entity_col
    df = table.to_frame()
    if column not in df.columns:
        raise KeyError(f"Column '{column}' not found in table")
    grouped = df.groupby(entity)[column]
    lo = grouped.transform(lambda s: s.quantile(lower))
    hi = grouped.transform(lambda s: s.quantile(upper))
    keep = (df[column] > lo) & (df[column] < hi)
    logger.info(
        "Trimmed %s to the within-entity (%s, %s) band: kept %s of %s rows",
        column,
        lower,
        upper,
        f"{int(keep.sum()):,}",
        f"{len(df):,}",
    )
    return table.where(keep.to_numpy())


def placebo_permute(
    table: PanelTable,
    column: str,
    *,
    seed: int,
    within_entity: bool = False,
    name: str | None = None,
) -> PanelTable:
    """Add a randomly permuted copy of ``column``.

    Parameters
    ----------
    seed : int
        Required; the same seed gives the same permutation.
    within_entity : bool
        Shuffle values only among rows of the same entity.
    name : str, optional
        Output column, ``"{column}_placebo"`` by default.
    """
    rng = np.random.default_rng(seed)
    values = table.column(column).to_numpy()
    if within_entity:
        entities = table.keys()[table.config.entity_col].to_numpy()
        shuffled = values.copy()
        for ent in np.unique(entities):
            idx = np.flatnonzero(entities == ent)
            shuffled[idx] = values[rng.permutation(idx)]
    else:
        shuffled = values[rng.permutation(len(values))]
    return table.assign(**{name or f"{column}_placebo": shuffled})
