"""Immutable entity x period table with strict key discipline."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .._types import PanelConfig
from ..diagnostics.coverage import CoverageAnalyzer
from ..errors import SchemaError, report_coverage
from ._time import period_id, period_label, to_period_id

logger = logging.getLogger(__name__)


def _preview(values: Sequence, n: int = 5) -> str:
    shown = ", ".join(str(v) for v in list(values)[:n])
    return f"[{shown}, ...]" if len(values) > n else f"[{shown}]"


class PanelTable:
    """Logical table keyed by ``(entity, period)`` with named numeric columns.

    Every operation returns a new table; the wrapped frame is never mutated
    after construction. Coverage losses noticed along the way (join
    mismatches, entities without periods) accumulate in ``coverage``.

    Parameters
    ----------
    df : pd.DataFrame
        Data with at least ``entity_col`` and ``time_col``. Every other
        column (or those listed in ``columns``) must be numeric.
    config : PanelConfig, optional
        Column name mapping and frequency. Uses defaults if not provided.
    columns : list[str], optional
        Value columns to keep. All non-key columns by default.

    Raises
    ------
    SchemaError
        Missing key columns, duplicate keys, unparseable or finer-than-
        frequency time ids, non-numeric value columns.

    Example
    -------
    >>> table = PanelTable(df, config=PanelConfig(entity_col="cbsa_code", time_col="ym"))
    >>> table = table.merge(controls).lag("rate_gap", 1)
    """

    def __init__(
        self,
        df: pd.DataFrame,
        config: PanelConfig | None = None,
        columns: list[str] | None = None,
    ) -> None:
        self.config = config or PanelConfig()
        self._df = self._validate(df, columns)
        self.coverage: tuple[str, ...] = ()

        logger.info(
            "PanelTable initialized: %s observations, %s entities, %s columns",
            f"{len(self._df):,}",
            f"{self._df[self.config.entity_col].nunique():,}",
            len(self.columns),
        )

    @classmethod
    def _wrap(
        cls,
        df: pd.DataFrame,
        config: PanelConfig,
        coverage: Iterable[str] = (),
    ) -> PanelTable:
        """Build from an already-validated frame without re-checking."""
        table = cls.__new__(cls)
        table.config = config
        table._df = df.sort_values(config.keys, kind="mergesort").reset_index(drop=True)
        table.coverage = tuple(coverage)
        return table

    def _validate(self, df: pd.DataFrame, columns: list[str] | None) -> pd.DataFrame:
        """Check required columns, coerce types, enforce unique keys."""
        c = self.config
        missing = [col for col in c.keys if col not in df.columns]
        if missing:
            raise SchemaError(
                f"Missing required columns: {missing}. "
                f"Available: {sorted(map(str, df.columns))}"
            )

        if columns is None:
            columns = [col for col in df.columns if col not in c.keys]
        else:
            absent = [col for col in columns if col not in df.columns]
            if absent:
                raise SchemaError(
                    f"Missing value columns: {absent}. "
                    f"Available: {sorted(map(str, df.columns))}"
                )
        out = df[c.keys + list(columns)].copy()

        if out[c.entity_col].isna().any():
            raise SchemaError(f"{int(out[c.entity_col].isna().sum()):,} rows have no entity id")
        out[c.entity_col] = out[c.entity_col].astype(str)
        out[c.time_col] = to_period_id(out[c.time_col], c.freq, entity=out[c.entity_col])

        for col in columns:
            if pd.api.types.is_bool_dtype(out[col]) or pd.api.types.is_numeric_dtype(out[col]):
                out[col] = out[col].astype("float64")
                continue
            try:
                out[col] = pd.to_numeric(out[col], errors="raise").astype("float64")
            except (ValueError, TypeError) as exc:
                raise SchemaError(f"Column {col!r} is not numeric: {exc}") from exc

        dupes = out.duplicated(c.keys, keep=False)
        if dupes.any():
            examples = out.loc[dupes, c.keys].drop_duplicates().head(3).values.tolist()
            raise SchemaError(
                f"Duplicate ({c.entity_col}, {c.time_col}) keys in {int(dupes.sum()):,} rows, "
                f"e.g. {examples}"
            )

        return out.sort_values(c.keys, kind="mergesort").reset_index(drop=True)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def columns(self) -> list[str]:
        """Value columns (keys excluded)."""
        return [col for col in self._df.columns if col not in self.config.keys]

    @property
    def entities(self) -> np.ndarray:
        return np.sort(self._df[self.config.entity_col].unique())

    @property
    def periods(self) -> np.ndarray:
        return np.sort(self._df[self.config.time_col].unique())

    @property
    def freq(self) -> str:
        return self.config.freq

    def __len__(self) -> int:
        return len(self._df)

    def __contains__(self, column: str) -> bool:
        return column in self._df.columns

    def __repr__(self) -> str:
        return (
            f"PanelTable({len(self):,} rows, {self._df[self.config.entity_col].nunique():,} "
            f"entities, columns={self.columns})"
        )

    def keys(self) -> pd.DataFrame:
        return self._df[self.config.keys].copy()

    def to_frame(self, labels: bool = False) -> pd.DataFrame:
        """Copy of the underlying frame, sorted by entity then period.

        Parameters
        ----------
        labels : bool
            Render period ordinals as labels (``"2020-01"``) instead of ints.
        """
        df = self._df.copy()
        if labels:
            df[self.config.time_col] = period_label(df[self.config.time_col], self.freq)
        return df

    def column(self, name: str) -> pd.Series:
        self._require([name])
        return self._df[name].copy()

    def _require(self, columns: Iterable[str]) -> None:
        missing = [col for col in columns if col not in self._df.columns]
        if missing:
            raise SchemaError(f"Missing required columns: {missing}. Available: {self.columns}")

    def _derive(self, df: pd.DataFrame, extra_coverage: Iterable[str] = ()) -> PanelTable:
        return PanelTable._wrap(df, self.config, self.coverage + tuple(extra_coverage))

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def merge(
        self,
        other: PanelTable | pd.DataFrame,
        aliases: dict[str, str] | None = None,
    ) -> PanelTable:
        """Full outer join on ``(entity, period)``.

        Rows from either side are never dropped; unmatched keys get missing
        values. Entities or periods present on one side only are reported as
        coverage warnings.

        Parameters
        ----------
        other : PanelTable or pd.DataFrame
            Table to join. A DataFrame is validated with this table's config.
        aliases : dict, optional
            Renames applied to ``other``'s value columns before joining.
            Overlapping value column names are an error otherwise.

        Returns
        -------
        PanelTable
        """
        c = self.config
        if not isinstance(other, PanelTable):
            other = PanelTable(other, config=c)

        if other.freq != self.freq:
            raise SchemaError(
                f"Cannot merge a {other.freq!r} table into a {self.freq!r} table. "
                "Resample explicitly first."
            )

        rhs = other.to_frame().rename(
            columns={other.config.entity_col: c.entity_col, other.config.time_col: c.time_col}
        )
        if aliases:
            unknown = [col for col in aliases if col not in other.columns]
            if unknown:
                raise SchemaError(f"Aliases for unknown columns: {unknown}")
            rhs = rhs.rename(columns=aliases)

        overlap = sorted(set(self.columns) & (set(rhs.columns) - set(c.keys)))
        if overlap:
            raise SchemaError(
                f"Overlapping column names {overlap}; pass aliases to rename them"
            )

        notes = self._mismatch_notes(rhs)
        merged = self._df.merge(rhs, on=c.keys, how="outer", validate="one_to_one")

        logger.info(
            "Merged %s + %s rows -> %s rows",
            f"{len(self):,}",
            f"{len(rhs):,}",
            f"{len(merged):,}",
        )
        return PanelTable._wrap(merged, c, self.coverage + other.coverage + tuple(notes))

    def _mismatch_notes(self, rhs: pd.DataFrame) -> list[str]:
        c = self.config
        diff = CoverageAnalyzer(c).compare_keys(self._df, rhs)
        notes = []
        for side in ("left", "right"):
            ents = diff[f"entities_{side}_only"]
            if ents:
                notes.append(report_coverage(
                    f"merge: {len(ents):,} entities only in {side} table {_preview(ents)}"
                ))
            pers = diff[f"periods_{side}_only"]
            if pers:
                notes.append(report_coverage(
                    f"merge: {len(pers):,} periods only in {side} table "
                    f"{_preview(period_label(pers, c.freq))}"
                ))
        return notes

    def merge_static(self, other: pd.DataFrame, columns: list[str] | None = None) -> PanelTable:
        """Broadcast time-invariant entity attributes onto every period.

        Entities in ``other`` with no rows in this table cannot create rows
        and are reported as a coverage warning instead.
        """
        c = self.config
        if c.entity_col not in other.columns:
            raise SchemaError(f"Missing required columns: [{c.entity_col!r}]")
        rhs = other.copy()
        rhs[c.entity_col] = rhs[c.entity_col].astype(str)
        if rhs[c.entity_col].duplicated().any():
            raise SchemaError(f"Duplicate {c.entity_col} values in entity-level table")

        columns = columns or [col for col in rhs.columns if col != c.entity_col]
        overlap = sorted(set(self.columns) & set(columns))
        if overlap:
            raise SchemaError(f"Overlapping column names {overlap}")
        rhs = rhs[[c.entity_col] + columns]
        for col in columns:
            try:
                rhs[col] = pd.to_numeric(rhs[col], errors="raise").astype("float64")
            except (ValueError, TypeError) as exc:
                raise SchemaError(f"Column {col!r} is not numeric: {exc}") from exc

        notes = []
        unused = sorted(set(rhs[c.entity_col]) - set(self._df[c.entity_col]))
        if unused:
            notes.append(report_coverage(
                f"merge_static: {len(unused):,} entities have no panel rows {_preview(unused)}"
            ))
        unmatched = sorted(set(self._df[c.entity_col]) - set(rhs[c.entity_col]))
        if unmatched:
            notes.append(report_coverage(
                f"merge_static: {len(unmatched):,} panel entities have no attributes "
                f"{_preview(unmatched)}"
            ))
        merged = self._df.merge(rhs, on=c.entity_col, how="left", validate="many_to_one")
        return self._derive(merged, notes)

    # ------------------------------------------------------------------
    # Within-entity shifts
    # ------------------------------------------------------------------

    def _shift(self, column: str, k: int, within: str | None) -> np.ndarray:
        """Value of ``column`` at period ``t - k`` of the same group, else NaN."""
        c = self.config
        within = within or c.entity_col
        self._require([column, within])
        df = self._df
        if within != c.entity_col and df.duplicated([within, c.time_col]).any():
            raise SchemaError(f"({within}, {c.time_col}) is not unique; cannot shift within it")

        source = df.set_index([within, c.time_col])[column]
        target = pd.MultiIndex.from_arrays([df[within], df[c.time_col] - k])
        return source.reindex(target).to_numpy()

    def lag(
        self,
        column: str,
        k: int = 1,
        name: str | None = None,
        within: str | None = None,
    ) -> PanelTable:
        """Add ``column`` lagged by ``k`` periods within each entity.

        The shift is by calendar period, not by row position: if the
        entity has no row at ``t - k`` the lag is missing. Values never
        wrap across entities.
        """
        if k < 0:
            raise ValueError(f"k must be >= 0, got {k}")
        return self.assign(**{name or f"{column}_lag{k}": self._shift(column, k, within)})

    def lead(
        self,
        column: str,
        k: int = 1,
        name: str | None = None,
        within: str | None = None,
    ) -> PanelTable:
        """Add ``column`` led by ``k`` periods within each entity."""
        if k < 0:
            raise ValueError(f"k must be >= 0, got {k}")
        return self.assign(**{name or f"{column}_lead{k}": self._shift(column, -k, within)})

    # ------------------------------------------------------------------
    # Row and column selection
    # ------------------------------------------------------------------

    def assign(self, **columns) -> PanelTable:
        """Add or replace value columns with arrays aligned to the rows."""
        c = self.config
        clash = [name for name in columns if name in c.keys]
        if clash:
            raise SchemaError(f"Cannot overwrite key columns: {clash}")
        df = self._df.copy()
        for name, values in columns.items():
            values = values.to_numpy() if isinstance(values, pd.Series) else np.asarray(values)
            if values.shape != (len(df),):
                raise SchemaError(
                    f"Column {name!r} has shape {values.shape}, expected ({len(df)},)"
                )
            df[name] = values.astype("float64")
        return self._derive(df)

    def select(self, columns: list[str]) -> PanelTable:
        self._require(columns)
        return self._derive(self._df[self.config.keys + list(columns)])

    def drop(self, columns: list[str]) -> PanelTable:
        self._require(columns)
        return self._derive(self._df.drop(columns=columns))

    def where(self, mask: pd.Series | np.ndarray) -> PanelTable:
        """Keep rows where ``mask`` is True (positional alignment)."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self),):
            raise SchemaError(f"Mask has shape {mask.shape}, expected ({len(self)},)")
        return self._derive(self._df[mask])

    def dropna(self, columns: list[str] | None = None) -> PanelTable:
        columns = columns or self.columns
        self._require(columns)
        return self._derive(self._df.dropna(subset=columns))

    def filter_time_range(self, start=None, end=None) -> PanelTable:
        """Keep periods in ``[start, end]`` (inclusive; labels or ordinals)."""
        t = self._df[self.config.time_col]
        mask = pd.Series(True, index=self._df.index)
        if start is not None:
            mask &= t >= period_id(start, self.freq)
        if end is not None:
            mask &= t <= period_id(end, self.freq)
        return self._derive(self._df[mask])

    def filter_entities(self, entities: Iterable, exclude: bool = False) -> PanelTable:
        wanted = {str(e) for e in entities}
        mask = self._df[self.config.entity_col].isin(wanted)
        return self._derive(self._df[~mask if exclude else mask])
