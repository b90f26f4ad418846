"""Time-invariant exposure index from reference-period category shares.

Pipeline: bucket raw observations into K fixed categories, sum amounts per
entity and category over a reference window (optionally with half-life
decay), normalize rows to shares, take the first principal component of the
standardized share matrix, orient it with a directional anchor, and center
it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .._types import PanelConfig
from ..errors import IdentificationError, SchemaError, report_coverage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExposureIndex:
    """Frozen per-entity exposure scores.

    The Series are copied on construction and their data is read-only, so
    writing through ``values`` or ``loadings`` raises.

    Attributes
    ----------
    values : pd.Series
        Exposure by entity id. Entities excluded from the PCA fit carry NaN.
    excluded : tuple[str, ...]
        Entities with an all-zero weight row in the reference window.
    loadings : pd.Series
        First-component loadings on the standardized shares (after orientation).
    explained_variance_ratio : float
        Share of standardized variance captured by the first component.
    flipped : bool
        Whether the orientation step reversed the raw component.
    notes : tuple[str, ...]
        Coverage and degeneracy messages raised while building.
    """

    values: pd.Series
    excluded: tuple[str, ...] = ()
    loadings: pd.Series | None = None
    explained_variance_ratio: float = float("nan")
    flipped: bool = False
    notes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in ("values", "loadings"):
            series = getattr(self, name)
            if series is None:
                continue
            series = series.copy()
            series.values.flags.writeable = False
            object.__setattr__(self, name, series)

    def to_frame(self, config: PanelConfig | None = None) -> pd.DataFrame:
        c = config or PanelConfig()
        return pd.DataFrame({
            c.entity_col: self.values.index.astype(str),
            "exposure": self.values.to_numpy(),
        })


def assign_buckets(
    values: pd.Series,
    edges: list[float],
    labels: list[str] | None = None,
) -> pd.Series:
    """Left-closed binning, e.g. rate buckets ``[-inf, 3), [3, 4), ...``.

    Values outside every bucket come back missing.
    """
    if labels is not None and len(labels) != len(edges) - 1:
        raise ValueError(f"{len(edges) - 1} buckets but {len(labels)} labels")
    return pd.cut(values, bins=edges, labels=labels, right=False)


def category_weights(
    records: pd.DataFrame,
    entity_col: str,
    category_col: str,
    amount_col: str,
    period_col: str | None = None,
    window: tuple[float, float] | None = None,
    ref_period: float | None = None,
    half_life: float | None = None,
    decay_rate: float = 0.5,
    categories: list | None = None,
) -> pd.DataFrame:
    """Entity x category share matrix from observation records.

    Each record contributes ``amount * decay_rate ** ((ref_period - period) / half_life)``
    to its entity's category total when ``half_life`` is set, else ``amount``.

    Parameters
    ----------
    records : pd.DataFrame
        One row per observation (e.g., one loan).
    entity_col, category_col, amount_col : str
        Grouping entity, category label, non-negative weight.
    period_col : str, optional
        Observation period used for the window and the decay.
    window : tuple, optional
        Inclusive ``(first, last)`` reference periods.
    ref_period : float, optional
        Period with decay weight 1. Defaults to the window end, else the
        latest observed period.
    half_life : float, optional
        Periods over which weight halves (with the default ``decay_rate``).
    categories : list, optional
        Fixed category order. Defaults to the categorical order of
        ``category_col`` or sorted observed labels.

    Returns
    -------
    pd.DataFrame
        Index: entity ids (str). Columns: categories. Rows sum to 1, except
        entities with no weight in the window, which are all zero so the
        exposure step can exclude and report them.
    """
    required = [entity_col, category_col, amount_col] + ([period_col] if period_col else [])
    missing = [col for col in required if col not in records.columns]
    if missing:
        raise SchemaError(
            f"Missing required columns: {missing}. "
            f"Available: {sorted(map(str, records.columns))}"
        )
    if (window is not None or half_life is not None) and period_col is None:
        raise ValueError("window and half_life need period_col")

    df = records[required].copy()
    df[entity_col] = df[entity_col].astype(str)
    df[amount_col] = pd.to_numeric(df[amount_col], errors="coerce")
    if (df[amount_col] < 0).any():
        raise SchemaError(f"Negative weights in {amount_col!r}")

    if categories is None:
        if isinstance(df[category_col].dtype, pd.CategoricalDtype):
            categories = list(df[category_col].cat.categories)
        else:
            categories = sorted(df[category_col].dropna().unique())

    entities = sorted(df[entity_col].unique())
    df = df.dropna(subset=[category_col, amount_col])

    if period_col is not None:
        periods = pd.to_numeric(df[period_col], errors="coerce")
        if window is not None:
            lo, hi = window
            df = df[(periods >= lo) & (periods <= hi)]
            periods = periods.loc[df.index]
        decay = pd.Series(1.0, index=df.index)
        if half_life is not None and np.isfinite(half_life):
            if ref_period is None:
                ref_period = window[1] if window is not None else periods.max()
            decay = decay_rate ** ((ref_period - periods) / half_life)
        df = df.assign(_weight=df[amount_col] * decay)
    else:
        df = df.assign(_weight=df[amount_col])

    totals = (
        df.groupby([entity_col, category_col], observed=True)["_weight"]
        .sum()
        .unstack(category_col)
        .reindex(index=entities, columns=categories)
        .fillna(0.0)
    )
    row_sum = totals.sum(axis=1)
    shares = totals.div(row_sum.where(row_sum > 0, 1.0), axis=0)
    shares.index.name = entity_col
    shares.columns.name = None

    logger.info(
        "Category weights: %s entities x %s categories (%s with no weight)",
        f"{len(shares):,}",
        len(categories),
        f"{int((row_sum == 0).sum()):,}",
    )
    return shares


def orient_component(component: np.ndarray, anchor: np.ndarray) -> tuple[np.ndarray, bool]:
    """Flip ``component`` when it correlates negatively with ``anchor``.

    Returns the oriented component and whether it was flipped. An undefined
    correlation (constant anchor or component) leaves the sign unchanged.
    """
    component = np.asarray(component, dtype=float)
    anchor = np.asarray(anchor, dtype=float)
    ok = np.isfinite(component) & np.isfinite(anchor)
    if ok.sum() < 2 or np.std(component[ok]) == 0 or np.std(anchor[ok]) == 0:
        logger.warning("Anchor correlation undefined; component sign left as is")
        return component, False
    corr = np.corrcoef(component[ok], anchor[ok])[0, 1]
    if corr < 0:
        return -component, True
    return component, False


def finalize_exposure(component: np.ndarray, anchor: np.ndarray) -> tuple[np.ndarray, bool]:
    """Orient, then center without rescaling."""
    oriented, flipped = orient_component(component, anchor)
    return oriented - oriented.mean(), flipped


def build_exposure(
    weights: pd.DataFrame,
    anchor: tuple[str, str] | None = None,
) -> ExposureIndex:
    """First principal component of the standardized share matrix.

    Parameters
    ----------
    weights : pd.DataFrame
        Entity x category non-negative weights (index = entity ids). Rows are
        normalized to shares here; all-zero rows are excluded from the fit
        and reported.
    anchor : tuple[str, str], optional
        ``(low, high)`` categories. The component is oriented so that it
        correlates positively with ``share[low] - share[high]``. Defaults to
        the first and last columns.

    Returns
    -------
    ExposureIndex
    """
    if weights.shape[1] < 2:
        raise SchemaError("Exposure needs at least two categories")
    w = weights.apply(pd.to_numeric, errors="coerce").astype("float64")
    if w.isna().any().any():
        raise SchemaError("Missing weights; use 0 for empty categories")
    if (w < 0).any().any():
        raise SchemaError("Negative weights")

    low, high = anchor or (w.columns[0], w.columns[-1])
    absent = [col for col in (low, high) if col not in w.columns]
    if absent:
        raise SchemaError(f"Anchor categories not in weights: {absent}")

    w.index = w.index.astype(str)
    notes: list[str] = []

    row_sum = w.sum(axis=1)
    zero_rows = row_sum == 0
    excluded = tuple(w.index[zero_rows])
    if excluded:
        notes.append(report_coverage(
            f"exposure: {len(excluded):,} entities have no weight in the reference "
            f"window and are excluded: {list(excluded[:5])}"
        ))
    shares = w[~zero_rows].div(row_sum[~zero_rows], axis=0)
    if len(shares) < 2:
        raise IdentificationError(
            f"Exposure PCA needs at least two entities with weight, got {len(shares)}"
        )

    sd = shares.std(ddof=1)
    constant = sd.index[~(sd > 0)].tolist()
    if constant:
        msg = f"exposure: constant share columns dropped from PCA: {constant}"
        logger.warning(msg)
        notes.append(msg)
    used = [col for col in shares.columns if col not in constant]
    if not used:
        raise IdentificationError("Every share column is constant; PCA undefined")

    z = (shares[used] - shares[used].mean()) / sd[used]
    pca = PCA(n_components=1, svd_solver="full")
    raw = pca.fit_transform(z.to_numpy())[:, 0]

    direction = (shares[low] - shares[high]).to_numpy()
    centered, flipped = finalize_exposure(raw, direction)

    sign = -1.0 if flipped else 1.0
    values = pd.Series(np.nan, index=w.index, name="exposure")
    values.loc[shares.index] = centered

    evr = float(pca.explained_variance_ratio_[0])
    logger.info(
        "Exposure built: %s entities, PC1 explains %.1f%% of variance%s",
        f"{len(shares):,}",
        100 * evr,
        " (flipped)" if flipped else "",
    )
    return ExposureIndex(
        values=values,
        excluded=excluded,
        loadings=pd.Series(sign * pca.components_[0], index=used, name="loading"),
        explained_variance_ratio=evr,
        flipped=flipped,
        notes=tuple(notes),
    )
