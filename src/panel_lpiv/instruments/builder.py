"""Shift-share (Bartik) instrument panel: exposure x shock."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from .._types import PanelConfig
from ..panels.table import PanelTable
from .exposure import ExposureIndex, build_exposure
from .shock import MISSING_SHOCK_POLICIES, ShockSeries, by_period, cumulate, residualize

logger = logging.getLogger(__name__)

INSTRUMENT_COLUMNS = ["exposure", "shock", "instrument", "instrument_cumulative"]


class InstrumentBuilder:
    """Build a shift-share instrument from exposure shares and a national shock.

    Parameters
    ----------
    config : PanelConfig, optional
        Column name mapping for the output table.
    anchor : tuple[str, str], optional
        ``(low, high)`` categories used to orient the exposure component.
    missing_shock : str
        ``"zero"`` (default) or ``"propagate"``: how a missing residual
        enters the cumulative shock.

    Example
    -------
    >>> builder = InstrumentBuilder(anchor=("lt3", "ge6"))
    >>> exposure = builder.build_exposure(shares)
    >>> shock = builder.build_shock(pmms["rate"], gs10["yield"])
    >>> instruments = builder.build(exposure, shock)
    """

    def __init__(
        self,
        config: PanelConfig | None = None,
        anchor: tuple[str, str] | None = None,
        missing_shock: str = "zero",
    ) -> None:
        if missing_shock not in MISSING_SHOCK_POLICIES:
            raise ValueError(
                f"missing_shock must be one of {MISSING_SHOCK_POLICIES}, got {missing_shock!r}"
            )
        self.config = config or PanelConfig()
        self.anchor = anchor
        self.missing_shock = missing_shock

    def build_exposure(self, weights: pd.DataFrame) -> ExposureIndex:
        return build_exposure(weights, anchor=self.anchor)

    def build_shock(
        self,
        target: pd.Series,
        controls: pd.Series | pd.DataFrame,
    ) -> ShockSeries:
        return residualize(
            target, controls, missing_policy=self.missing_shock, freq=self.config.freq
        )

    def build(
        self,
        exposure: ExposureIndex | pd.Series,
        shock: ShockSeries | pd.Series,
    ) -> PanelTable:
        """Cross every entity with every period and multiply.

        Parameters
        ----------
        exposure : ExposureIndex or pd.Series
            Exposure by entity id. A bare Series is used as is (no PCA).
        shock : ShockSeries or pd.Series
            Shock by period ordinal. For a bare Series the cumulative shock
            is computed here under ``missing_shock``.

        Returns
        -------
        PanelTable
            Columns ``exposure``, ``shock``, ``instrument``,
            ``instrument_cumulative``. An instrument is missing wherever an
            operand is missing; it is never set to zero.
        """
        c = self.config
        notes: tuple[str, ...] = ()
        if isinstance(exposure, ExposureIndex):
            notes = exposure.notes
            expo = exposure.values
        else:
            expo = exposure
        if isinstance(shock, ShockSeries):
            shock_values, shock_cum = shock.values, shock.cumulative
        else:
            shock_values = by_period(pd.to_numeric(shock, errors="coerce"), c.freq)
            shock_cum = cumulate(shock_values, self.missing_shock)

        expo = pd.Series(
            pd.to_numeric(expo, errors="coerce").to_numpy(),
            index=expo.index.astype(str),
        )
        grid = pd.MultiIndex.from_product(
            [expo.index.unique(), shock_values.index.unique()],
            names=c.keys,
        )
        df = grid.to_frame(index=False)
        df["exposure"] = expo.reindex(df[c.entity_col]).to_numpy()
        df["shock"] = shock_values.reindex(df[c.time_col]).to_numpy()
        cum = shock_cum.reindex(df[c.time_col]).to_numpy()

        df["instrument"] = df["exposure"] * df["shock"]
        df["instrument_cumulative"] = df["exposure"] * cum

        table = PanelTable(df, config=c, columns=INSTRUMENT_COLUMNS)
        n_missing = int(np.isnan(df["instrument"].to_numpy()).sum())
        logger.info(
            "Instrument panel: %s entities x %s periods (%s missing instruments)",
            f"{expo.index.nunique():,}",
            f"{shock_values.index.nunique():,}",
            f"{n_missing:,}",
        )
        return PanelTable._wrap(table.to_frame(), c, notes)
