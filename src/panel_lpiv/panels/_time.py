"""Period identifiers.

A ``time_id`` is the integer ordinal of a pandas ``Period`` at the panel
frequency. For monthly data that is ``(year - 1970) * 12 + month - 1``, so
ids are monotonic and ``t + k`` is exactly ``k`` months later.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from ..errors import SchemaError

_MONTH_RE = r"^\d{4}-\d{2}$"


def to_period_id(
    values: pd.Series,
    freq: str = "M",
    entity: pd.Series | None = None,
) -> pd.Series:
    """Convert a column of period-like values to integer period ordinals.

    Parameters
    ----------
    values : pd.Series
        Integer ordinals, ``Period`` values, datetimes, or ``"YYYY-MM"``
        strings (monthly only). Free-form strings are rejected.
    freq : str
        Panel frequency.
    entity : pd.Series, optional
        Entity ids aligned with ``values``. When given, datetimes that fall
        into the same period for one entity are rejected as finer-grained
        than ``freq``.

    Returns
    -------
    pd.Series
        ``int64`` ordinals with the index of ``values``.
    """
    if len(values) == 0:
        return pd.Series([], index=values.index, dtype="int64")
    if values.isna().any():
        raise SchemaError(f"{int(values.isna().sum()):,} missing time ids in {values.name!r}")

    if pd.api.types.is_integer_dtype(values):
        return values.astype("int64")

    if pd.api.types.is_float_dtype(values):
        if not np.all(np.mod(values.to_numpy(), 1) == 0):
            raise SchemaError(f"Non-integer numeric time ids in {values.name!r}")
        return values.astype("int64")

    if isinstance(values.dtype, pd.PeriodDtype):
        if values.dtype != pd.PeriodDtype(freq):
            raise SchemaError(
                f"Time column {values.name!r} has frequency {values.dtype.freq.freqstr!r}, "
                f"panel frequency is {freq!r}. Resample explicitly before building the table."
            )
        return pd.Series(pd.PeriodIndex(values).asi8, index=values.index, dtype="int64")

    if pd.api.types.is_datetime64_any_dtype(values):
        periods = values.dt.to_period(freq)
        if entity is not None:
            dated = pd.DataFrame({"entity": entity.to_numpy(), "period": periods, "date": values})
            n_dates = dated.groupby(["entity", "period"], observed=True)["date"].nunique()
            if (n_dates > 1).any():
                raise SchemaError(
                    f"Time column {values.name!r} is finer than {freq!r}: "
                    f"{int((n_dates > 1).sum()):,} entity-periods hold several dates. "
                    "Aggregate with panels.resample.to_monthly first."
                )
        return pd.Series(pd.PeriodIndex(periods).asi8, index=values.index, dtype="int64")

    if values.map(lambda v: isinstance(v, pd.Period)).all():
        return to_period_id(values.astype(pd.PeriodDtype(values.iloc[0].freqstr)), freq, entity)

    if not values.map(lambda v: isinstance(v, str)).all():
        raise SchemaError(f"Unsupported time id type in {values.name!r}: {values.dtype}")

    text = values.str.strip()
    if freq == "M":
        bad = ~text.str.match(_MONTH_RE)
        if bad.any():
            raise SchemaError(
                f"Time ids must look like 'YYYY-MM'; got e.g. {text[bad].unique()[:3].tolist()}"
            )
        year = text.str.slice(0, 4).astype("int64")
        month = text.str.slice(5, 7).astype("int64")
        if not month.between(1, 12).all():
            raise SchemaError(f"Month out of range in {values.name!r}")
        return (year - 1970) * 12 + month - 1

    try:
        return pd.Series(pd.PeriodIndex(text, freq=freq).asi8, index=values.index, dtype="int64")
    except (ValueError, TypeError) as exc:
        raise SchemaError(f"Cannot parse time ids in {values.name!r}: {exc}") from exc


def period_id(value, freq: str = "M") -> int:
    """Scalar version of :func:`to_period_id`."""
    return int(to_period_id(pd.Series([value], name="time"), freq).iloc[0])


def period_label(ids, freq: str = "M") -> list[str]:
    """Render period ordinals as labels (``"2020-01"`` for monthly)."""
    return [str(pd.Period(ordinal=int(i), freq=freq)) for i in ids]


def period_range(start, end, freq: str = "M") -> np.ndarray:
    """Inclusive range of period ordinals between two period-like values."""
    lo, hi = period_id(start, freq), period_id(end, freq)
    if lo > hi:
        raise ValueError(f"start ({start}) must be <= end ({end})")
    return np.arange(lo, hi + 1, dtype="int64")
