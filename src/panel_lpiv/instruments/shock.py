"""Aggregate shock series: the residual of a target series on controls."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..errors import IdentificationError, SchemaError
from ..panels._time import to_period_id

logger = logging.getLogger(__name__)

MISSING_SHOCK_POLICIES = ("zero", "propagate")


@dataclass(frozen=True)
class ShockSeries:
    """Residualized shock by period.

    Attributes
    ----------
    values : pd.Series
        Residual by period ordinal, spanning the first to the last jointly
        observed period. Gaps inside that span are NaN.
    cumulative : pd.Series
        Running sum of ``values`` in time order under ``missing_policy``.
    coefficients : pd.Series
        ``const`` plus one slope per control.
    n_obs : int
        Jointly observed periods used in the fit.
    r_squared : float
    missing_policy : str
        ``"zero"`` or ``"propagate"``; see :func:`cumulate`.
    """

    values: pd.Series
    cumulative: pd.Series
    coefficients: pd.Series
    n_obs: int
    r_squared: float
    missing_policy: str = "zero"


def by_period(series: pd.Series | pd.DataFrame, freq: str) -> pd.Series | pd.DataFrame:
    """Re-index by period ordinal, sorted."""
    idx = to_period_id(pd.Series(series.index, name="period"), freq)
    if idx.duplicated().any():
        raise SchemaError("Duplicate periods in shock input")
    out = series.copy()
    out.index = pd.Index(idx.to_numpy(), name="period")
    return out.sort_index()


def cumulate(values: pd.Series, missing_policy: str = "zero") -> pd.Series:
    """Running sum of a shock series in period order.

    ``"zero"`` counts a missing residual as a zero contribution, so the
    cumulative shock stays defined across gaps. That is a modeling choice,
    not an imputation.
    ``"propagate"`` makes the running sum missing from the first gap on.
    """
    if missing_policy not in MISSING_SHOCK_POLICIES:
        raise ValueError(
            f"missing_policy must be one of {MISSING_SHOCK_POLICIES}, got {missing_policy!r}"
        )
    values = values.sort_index()
    if missing_policy == "zero":
        out = values.fillna(0.0).cumsum()
    else:
        out = values.cumsum(skipna=False)
    return out.rename("shock_cumulative")


def residualize(
    target: pd.Series,
    controls: pd.Series | pd.DataFrame,
    missing_policy: str = "zero",
    freq: str = "M",
) -> ShockSeries:
    """OLS of ``target`` on a constant and ``controls``; keep the residual.

    Parameters
    ----------
    target : pd.Series
        Aggregate policy/price series indexed by period (ordinals, ``Period``
        values, datetimes or ``"YYYY-MM"`` labels).
    controls : pd.Series or pd.DataFrame
        Control series on the same kind of index.
    missing_policy : str
        Treatment of missing residuals in the cumulative variant.
    freq : str
        Period frequency of the index.

    Returns
    -------
    ShockSeries
        Defined only where target and every control are observed. Nothing
        is extrapolated outside that range.
    """
    if missing_policy not in MISSING_SHOCK_POLICIES:
        raise ValueError(
            f"missing_policy must be one of {MISSING_SHOCK_POLICIES}, got {missing_policy!r}"
        )
    y = by_period(pd.to_numeric(target, errors="coerce").rename("target"), freq)
    x = controls.to_frame() if isinstance(controls, pd.Series) else controls
    x = by_period(x.apply(pd.to_numeric, errors="coerce"), freq)
    x.columns = [str(col) for col in x.columns]

    joint = pd.concat([y, x], axis=1, join="outer").sort_index()
    observed = joint.notna().all(axis=1)
    fit = joint[observed]

    k = x.shape[1] + 1
    if len(fit) <= k:
        raise IdentificationError(
            f"Shock regression needs more than {k} jointly observed periods, got {len(fit)}"
        )

    X = np.column_stack([np.ones(len(fit)), fit[x.columns].to_numpy()])
    beta, _, rank, _ = np.linalg.lstsq(X, fit["target"].to_numpy(), rcond=None)
    if rank < k:
        raise IdentificationError("Shock controls are collinear with the constant")
    resid = fit["target"].to_numpy() - X @ beta

    span = np.arange(fit.index.min(), fit.index.max() + 1)
    values = pd.Series(resid, index=fit.index, name="shock").reindex(span)
    values.index.name = "period"

    tss = float(np.sum((fit["target"] - fit["target"].mean()) ** 2))
    r2 = 1 - float(resid @ resid) / tss if tss > 0 else float("nan")

    n_gaps = int(values.isna().sum())
    if n_gaps:
        logger.warning("Shock series has %s unobserved periods inside its span", n_gaps)
    logger.info("Shock residualized over %s periods (R^2 = %.3f)", f"{len(fit):,}", r2)

    return ShockSeries(
        values=values,
        cumulative=cumulate(values, missing_policy),
        coefficients=pd.Series(beta, index=["const", *x.columns], name="coef"),
        n_obs=int(len(fit)),
        r_squared=r2,
        missing_policy=missing_policy,
    )
