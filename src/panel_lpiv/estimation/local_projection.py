"""Local projections: one independent regression per horizon."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

import numpy as np
import pandas as pd

from .._types import PanelConfig, RegressionSpec
from ..errors import IdentificationError
from ..panels.table import PanelTable
from .iv import IVEstimator
from .results import EstimationResult, ImpulseResponseTable

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


class LocalProjectionRunner:
    """Trace an impulse response by re-fitting one spec at each horizon.

    At horizon ``h`` the outcome is replaced by its value ``h`` periods
    ahead within the same entity (or by the running sum over ``t..t+h``
    when ``cumulative=True``); regressors, instruments, controls and fixed
    effects stay anchored at ``t``. Rows whose lead runs past the entity's
    observed range drop out of that horizon only.

    Parameters
    ----------
    estimator : IVEstimator, optional
        Fitting engine shared by every horizon. It holds no per-fit state.
    config : PanelConfig, optional
        Used to wrap DataFrame input as a PanelTable.
    cumulative : bool
        Use ``sum_{j=0..h} y_{t+j}`` as the horizon-``h`` outcome.
    max_workers : int, optional
        Fit horizons on a thread pool of this size. ``None`` runs them in
        order on the calling thread. Results are identical either way.

    Example
    -------
    >>> runner = LocalProjectionRunner(max_workers=4)
    >>> irf = runner.run(spec, panel, horizons=range(0, 13))
    >>> irf.to_frame()[["horizon", "coefficient", "std_error", "status"]]
    """

    def __init__(
        self,
        estimator: IVEstimator | None = None,
        config: PanelConfig | None = None,
        cumulative: bool = False,
        max_workers: int | None = None,
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.estimator = estimator or IVEstimator(config=config)
        self.config = config or self.estimator.config
        self.cumulative = cumulative
        self.max_workers = max_workers

    def horizon_sample(
        self,
        spec: RegressionSpec,
        data: PanelTable,
        h: int,
    ) -> tuple[PanelTable, RegressionSpec]:
        """Table with the horizon-``h`` outcome column and a ``RegressionSpec`` reading it."""
        if h < 0:
            raise ValueError(f"Horizons must be >= 0, got {h}")
        name = f"{spec.outcome}_{'cum' if self.cumulative else 'h'}{h}"
        if not self.cumulative:
            shifted = data.lead(spec.outcome, h, name=name)
        else:
            # NaN in any term leaves the sum NaN.
            total = np.zeros(len(data))
            for j in range(h + 1):
                total = total + data.lead(spec.outcome, j, name="_lead").column("_lead").to_numpy()
            shifted = data.assign(**{name: total})
        return shifted, spec.with_outcome(name)

    def run(
        self,
        spec: RegressionSpec,
        data: PanelTable | pd.DataFrame,
        horizons: Iterable[int] = range(0, 13),
        label: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ImpulseResponseTable:
        """Fit ``spec`` at every horizon.

        Parameters
        ----------
        spec : RegressionSpec
            Spec at horizon 0; its outcome is shifted per horizon.
        data : PanelTable or pd.DataFrame
            Panel holding every column ``spec`` reads.
        horizons : iterable of int
            Non-negative, distinct horizons.
        label : str, optional
            Stored on the output table.
        cancel : threading.Event, optional
            Checked before each horizon starts. Horizons not yet started
            when it is set are recorded as failed with reason ``"cancelled"``.

        Returns
        -------
        ImpulseResponseTable
            One entry per horizon. An IdentificationError at one horizon is
            recorded as a failed entry; SchemaError is raised.
        """
        if not isinstance(data, PanelTable):
            data = PanelTable(data, config=self.config)
        horizons = sorted(int(h) for h in horizons)
        if len(set(horizons)) != len(horizons):
            raise ValueError(f"Duplicate horizons: {horizons}")
        if any(h < 0 for h in horizons):
            raise ValueError(f"Horizons must be >= 0, got {horizons}")

        def fit_one(h: int) -> EstimationResult:
            return self._fit_horizon(spec, data, h, cancel)

        if self.max_workers is None or len(horizons) < 2:
            results = [fit_one(h) for h in horizons]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(fit_one, horizons))

        irf = ImpulseResponseTable(results, spec=spec, label=label, coverage=data.coverage)
        if irf.failed:
            logger.warning(
                "%s: %s of %s horizons failed %s",
                label or spec.outcome,
                len(irf.failed),
                len(irf),
                sorted(irf.failed),
            )
        logger.info(
            "Local projection %s: %s horizons (%s), %s",
            label or spec.outcome,
            len(irf),
            "cumulative" if self.cumulative else "level",
            spec.formula,
        )
        return irf

    def _fit_horizon(
        self,
        spec: RegressionSpec,
        data: PanelTable,
        h: int,
        cancel: threading.Event | None,
    ) -> EstimationResult:
        if cancel is not None and cancel.is_set():
            return EstimationResult.failed(spec.focal, CANCELLED, horizon=h, spec=spec, vcov_type=spec.vcov)

        sample, h_spec = self.horizon_sample(spec, data, h)
        try:
            result = self.estimator.fit(h_spec, sample)
        except IdentificationError as exc:
            logger.warning("Horizon %s failed: %s", h, exc)
            return EstimationResult.failed(
                spec.focal, str(exc), horizon=h, spec=h_spec, vcov_type=spec.vcov
            )
        return result.with_horizon(h)
