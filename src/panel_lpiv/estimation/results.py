"""Estimation results and impulse-response tables."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Iterator, Sequence

import numpy as np
import pandas as pd

from .._types import RegressionSpec

NAN = float("nan")

DIAGNOSTIC_KEYS = [
    "first_stage_f",
    "first_stage_f_robust",
    "first_stage_t",
    "sargan_stat",
    "sargan_pvalue",
    "overid",
    "n_singletons",
    "fe_converged",
]

IRF_COLUMNS = [
    "horizon",
    "term",
    "coefficient",
    "std_error",
    "ci_lower",
    "ci_upper",
    "p_value",
    "n_obs",
    "n_clusters",
    "vcov_type",
    "std_error_naive",
    "status",
] + [f"diagnostic_{key}" for key in DIAGNOSTIC_KEYS]

FAILED_PREFIX = "failed: "


@dataclass(frozen=True, eq=False)
class EstimationResult:
    """One fitted regression (or one failed attempt).

    ``std_error`` follows ``vcov_type``: cluster-robust unless ``spec.vcov`` asked
    for ``"naive"``. ``std_error_naive`` is always the homoskedastic,
    non-clustered standard error, reported for comparison only.

    A failed result keeps ``status == "failed"`` and a ``reason``; its
    numbers are NaN, never zero.
    """

    term: str
    coefficient: float = NAN
    std_error: float = NAN
    ci_lower: float = NAN
    ci_upper: float = NAN
    p_value: float = NAN
    n_obs: int = 0
    n_clusters: int | None = None
    vcov_type: str = "cluster"
    std_error_naive: float = NAN
    horizon: int | None = None
    status: str = "ok"
    reason: str | None = None
    diagnostics: dict = field(default_factory=dict)
    coefficients: pd.Series | None = None
    std_errors: pd.Series | None = None
    vcov: pd.DataFrame | None = None
    coverage: tuple[str, ...] = ()
    spec: RegressionSpec | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def failed(
        cls,
        term: str,
        reason: str,
        horizon: int | None = None,
        n_obs: int = 0,
        spec: RegressionSpec | None = None,
        vcov_type: str = "cluster",
    ) -> EstimationResult:
        return cls(
            term=term,
            n_obs=n_obs,
            horizon=horizon,
            status="failed",
            reason=reason,
            spec=spec,
            vcov_type=vcov_type,
        )

    def with_horizon(self, horizon: int) -> EstimationResult:
        return replace(self, horizon=horizon)

    def to_row(self) -> dict:
        """Flat record with the impulse-response column layout."""
        row = {
            "horizon": self.horizon,
            "term": self.term,
            "coefficient": self.coefficient,
            "std_error": self.std_error,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "p_value": self.p_value,
            "n_obs": self.n_obs,
            "n_clusters": self.n_clusters,
            "vcov_type": self.vcov_type,
            "std_error_naive": self.std_error_naive,
            "status": "ok" if self.ok else f"{FAILED_PREFIX}{self.reason}",
        }
        for key in DIAGNOSTIC_KEYS:
            row[f"diagnostic_{key}"] = self.diagnostics.get(key, NAN)
        return row

    @classmethod
    def from_row(cls, row: dict) -> EstimationResult:
        """Inverse of :meth:`to_row` (coefficient vector and vcov are not kept)."""
        status = str(row.get("status", "ok"))
        failed = status.startswith(FAILED_PREFIX)
        diagnostics = {
            key: _flag(row[f"diagnostic_{key}"])
            for key in DIAGNOSTIC_KEYS
            if f"diagnostic_{key}" in row and not _is_missing(row[f"diagnostic_{key}"])
        }
        n_clusters = row.get("n_clusters")
        horizon = row.get("horizon")
        return cls(
            term=str(row["term"]),
            coefficient=float(row["coefficient"]),
            std_error=float(row["std_error"]),
            ci_lower=float(row["ci_lower"]),
            ci_upper=float(row["ci_upper"]),
            p_value=float(row.get("p_value", NAN)),
            n_obs=int(row.get("n_obs", 0)),
            n_clusters=None if _is_missing(n_clusters) else int(n_clusters),
            vcov_type=str(row.get("vcov_type", "cluster")),
            std_error_naive=float(row.get("std_error_naive", NAN)),
            horizon=None if _is_missing(horizon) else int(horizon),
            status="failed" if failed else "ok",
            reason=status[len(FAILED_PREFIX):] if failed else None,
            diagnostics=diagnostics,
        )


def _flag(value):
    """Turn ``"True"``/``"False"`` text written by a string-only format back into a bool."""
    if isinstance(value, str) and value in ("True", "False"):
        return value == "True"
    return value


def _is_missing(value) -> bool:
    if value is None or (isinstance(value, str) and value == ""):
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class ImpulseResponseTable:
    """Ordered per-horizon results of one local projection run.

    Failed horizons stay in the table, marked ``"failed: <reason>"`` in
    ``status``; they are never dropped or zero-filled.

    Parameters
    ----------
    results : sequence of EstimationResult
        One result per horizon, each with ``horizon`` set.
    spec : RegressionSpec, optional
        Spec shared by every horizon (outcome before shifting).
    label : str, optional
        Variant name, e.g. ``"baseline"`` or ``"high_elasticity"``.
    coverage : tuple[str, ...]
        Coverage warnings collected from the input table.
    """

    def __init__(
        self,
        results: Sequence[EstimationResult],
        spec: RegressionSpec | None = None,
        label: str | None = None,
        coverage: tuple[str, ...] = (),
    ) -> None:
        horizons = [r.horizon for r in results]
        if any(h is None for h in horizons):
            raise ValueError("Every result needs a horizon")
        if len(set(horizons)) != len(horizons):
            raise ValueError(f"Duplicate horizons: {sorted(horizons)}")
        self.results: tuple[EstimationResult, ...] = tuple(
            sorted(results, key=lambda r: r.horizon)
        )
        self.spec = spec
        self.label = label
        self.coverage = tuple(coverage)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[EstimationResult]:
        return iter(self.results)

    def __getitem__(self, horizon: int) -> EstimationResult:
        for res in self.results:
            if res.horizon == horizon:
                return res
        raise KeyError(horizon)

    def __repr__(self) -> str:
        n_failed = len(self.failed)
        name = f"{self.label!r}, " if self.label else ""
        return f"ImpulseResponseTable({name}{len(self)} horizons, {n_failed} failed)"

    @property
    def horizons(self) -> list[int]:
        return [r.horizon for r in self.results]

    @property
    def failed(self) -> dict[int, str]:
        """``{horizon: reason}`` for horizons that could not be estimated."""
        return {r.horizon: r.reason for r in self.results if not r.ok}

    @property
    def coefficients(self) -> np.ndarray:
        return np.array([r.coefficient for r in self.results])

    def to_frame(self) -> pd.DataFrame:
        """Tabular form: ``horizon, coefficient, std_error, ci_lower, ci_upper, n_obs, diagnostic_*``."""
        return pd.DataFrame([r.to_row() for r in self.results], columns=IRF_COLUMNS)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        spec: RegressionSpec | None = None,
        label: str | None = None,
    ) -> ImpulseResponseTable:
        missing = [col for col in ("horizon", "term", "coefficient", "std_error") if col not in df]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")
        results = [EstimationResult.from_row(row) for row in df.to_dict(orient="records")]
        return cls(results, spec=spec, label=label)


def summarize_fit(result: EstimationResult) -> str:
    """One-line description for logs."""
    if not result.ok:
        return f"{result.term}: failed ({result.reason})"
    stars = ""
    if not math.isnan(result.p_value):
        stars = "***" if result.p_value < 0.01 else "**" if result.p_value < 0.05 else "*" if result.p_value < 0.1 else ""
    return (
        f"{result.term} = {result.coefficient:.4f}{stars} "
        f"(se {result.std_error:.4f}, {result.vcov_type}), N = {result.n_obs:,}"
    )
