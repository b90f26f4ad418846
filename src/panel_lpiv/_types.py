"""Shared types and configuration for panel-lpiv."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

VCOV_TYPES = ("cluster", "naive")


@dataclass(frozen=True)
class PanelConfig:
    """Column name mapping for panel data.

    Every table, builder and estimator takes this as its configuration
    argument. Create one and pass it everywhere.

    Parameters
    ----------
    entity_col : str
        Column name for the cross-sectional unit (e.g., CBSA code, category).
    time_col : str
        Column name for the period identifier. Stored as the integer period
        ordinal of ``freq``.
    freq : str
        Pandas period frequency alias shared by every table. Monthly by default.

    Example
    -------
    >>> config = PanelConfig(entity_col="cbsa_code", time_col="ym")
    """

    entity_col: str = "entity_id"
    time_col: str = "time_id"
    freq: str = "M"

    @property
    def keys(self) -> list[str]:
        return [self.entity_col, self.time_col]


def _as_tuple(value: str | Sequence[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class RegressionSpec:
    """Immutable description of one regression.

    The same spec, reapplied to horizon-shifted data, drives the local
    projection loop. A spec without endogenous regressors is a plain
    fixed-effects OLS regression.

    Parameters
    ----------
    outcome : str
        Dependent variable.
    endogenous : str or sequence of str
        Endogenous regressor(s), instrumented by ``instruments``.
    instruments : str or sequence of str
        Excluded instruments.
    controls : str or sequence of str
        Exogenous controls (included instruments).
    fixed_effects : str or sequence of str
        Group columns whose means are absorbed (entity and/or time).
    cluster : str, optional
        Cluster column for the variance. Required when ``vcov="cluster"``.
    vcov : str
        ``"cluster"`` (default) or ``"naive"``.
    focal : str, optional
        Term reported in impulse-response tables. Defaults to the first
        endogenous regressor, else the first control.

    Example
    -------
    >>> spec = RegressionSpec(
    ...     outcome="price_chg",
    ...     endogenous="rate_gap",
    ...     instruments="instrument",
    ...     controls=["unemployment_rate", "mig_rate_month"],
    ...     fixed_effects=["entity_id", "time_id"],
    ...     cluster="entity_id",
    ... )
    """

    outcome: str
    endogenous: tuple[str, ...] = ()
    instruments: tuple[str, ...] = ()
    controls: tuple[str, ...] = ()
    fixed_effects: tuple[str, ...] = ()
    cluster: str | None = None
    vcov: str = "cluster"
    focal: str | None = field(default=None)

    def __post_init__(self) -> None:
        for name in ("endogenous", "instruments", "controls", "fixed_effects"):
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))

        if self.vcov not in VCOV_TYPES:
            raise ValueError(f"vcov must be one of {VCOV_TYPES}, got {self.vcov!r}")
        if self.vcov == "cluster" and self.cluster is None:
            raise ValueError(
                "Clustered variance needs a cluster column. "
                "Pass vcov='naive' to request the non-clustered variance explicitly."
            )
        if self.instruments and not self.endogenous:
            raise ValueError("Instruments given without endogenous regressors")
        if len(self.instruments) < len(self.endogenous):
            raise ValueError(
                f"Under-identified: {len(self.endogenous)} endogenous regressor(s) "
                f"but only {len(self.instruments)} instrument(s)"
            )
        if not self.endogenous and not self.controls:
            raise ValueError("Spec has no regressors")

        roles = [self.outcome, *self.endogenous, *self.instruments, *self.controls]
        dupes = sorted({name for name in roles if roles.count(name) > 1})
        if dupes:
            raise ValueError(f"Columns used in more than one role: {dupes}")

        if self.focal is None:
            focal = self.endogenous[0] if self.endogenous else self.controls[0]
            object.__setattr__(self, "focal", focal)
        elif self.focal not in self.regressors:
            raise ValueError(
                f"focal term {self.focal!r} is not a regressor: {list(self.regressors)}"
            )

    @property
    def regressors(self) -> tuple[str, ...]:
        """Second-stage regressors in coefficient order."""
        return self.endogenous + self.controls

    @property
    def is_iv(self) -> bool:
        return bool(self.endogenous)

    @property
    def columns(self) -> list[str]:
        """Every column this regression reads, without duplicates."""
        cols = [
            self.outcome,
            *self.endogenous,
            *self.instruments,
            *self.controls,
            *self.fixed_effects,
        ]
        if self.cluster is not None:
            cols.append(self.cluster)
        return list(dict.fromkeys(cols))

    @property
    def formula(self) -> str:
        """fixest-style label, e.g. ``y ~ w | entity_id + time_id | x ~ z``."""
        rhs = " + ".join(self.controls) or "1"
        parts = [f"{self.outcome} ~ {rhs}"]
        if self.fixed_effects:
            parts.append(" + ".join(self.fixed_effects))
        if self.endogenous:
            parts.append(f"{' + '.join(self.endogenous)} ~ {' + '.join(self.instruments)}")
        return " | ".join(parts)

    def with_outcome(self, outcome: str) -> RegressionSpec:
        return replace(self, outcome=outcome)
