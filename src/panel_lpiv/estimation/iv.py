"""Two-stage least squares on fixed-effects-demeaned panel data.

Inference is cluster-robust by default: the variance sandwiches the
outer product of per-cluster score sums, allowing arbitrary correlation and
heteroskedasticity within clusters. The homoskedastic variance is always
reported alongside as ``std_error_naive`` and is used only for
``RegressionSpec(vcov="naive")``.

Small-sample correction (``small_sample=True``) follows the usual CR1 form
``G / (G - 1) * (N - 1) / (N - K)``. A fixed effect nested in the cluster
variable adds one parameter to ``K`` instead of its number of levels.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy import stats

from .._types import PanelConfig, RegressionSpec
from ..errors import IdentificationError, SchemaError
from ..panels.table import PanelTable
from .fixed_effects import DemeanResult, FixedEffectsTransform
from .results import EstimationResult, summarize_fit

logger = logging.getLogger(__name__)

# Demeaned column norm below this share of its raw norm counts as no variation.
_ZERO_VARIATION = 1e-10


def _cluster_meat(scores: np.ndarray, codes: np.ndarray, n_clusters: int) -> np.ndarray:
    sums = np.zeros((n_clusters, scores.shape[1]))
    np.add.at(sums, codes, scores)
    return sums.T @ sums


def _check_full_rank(M: np.ndarray, names: list[str], raw: np.ndarray, what: str) -> None:
    """Raise if a column has no variation left or the block is rank deficient."""
    norms = np.linalg.norm(M, axis=0)
    raw_norms = np.maximum(1.0, np.linalg.norm(raw, axis=0))
    flat = [name for name, nrm, ref in zip(names, norms, raw_norms) if nrm <= _ZERO_VARIATION * ref]
    if flat:
        raise IdentificationError(
            f"No variation left in {what} {flat} after absorbing fixed effects"
        )
    if np.linalg.matrix_rank(M / norms) < M.shape[1]:
        raise IdentificationError(f"Collinear {what} after demeaning: {names}")


class IVEstimator:
    """Fixed-effects 2SLS (or OLS) with cluster-robust inference.

    Parameters
    ----------
    config : PanelConfig, optional
        Column name mapping, used when ``data`` is a DataFrame.
    ci : float
        Confidence level for ``ci_lower``/``ci_upper`` (normal critical value).
    fe_tol : float
        Convergence tolerance of the fixed-effects demeaning.
    fe_max_iter : int
        Sweep cap of the fixed-effects demeaning.
    small_sample : bool
        Apply the CR1 / ``N - K`` degrees-of-freedom corrections.

    Example
    -------
    >>> est = IVEstimator()
    >>> res = est.fit(spec, panel)
    >>> res.coefficient, res.std_error, res.diagnostics["first_stage_f"]
    """

    def __init__(
        self,
        config: PanelConfig | None = None,
        ci: float = 0.95,
        fe_tol: float = 1e-10,
        fe_max_iter: int = 10_000,
        small_sample: bool = True,
    ) -> None:
        if not 0 < ci < 1:
            raise ValueError(f"ci must be in (0, 1), got {ci}")
        self.config = config or PanelConfig()
        self.ci = ci
        self.small_sample = small_sample
        self._fe = FixedEffectsTransform(tol=fe_tol, max_iter=fe_max_iter)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fit(self, spec: RegressionSpec, data: PanelTable | pd.DataFrame) -> EstimationResult:
        """Fit ``spec`` on the complete rows of ``data``.

        Raises
        ------
        SchemaError
            A column named in ``spec`` is missing or not numeric.
        IdentificationError
            No usable rows, fewer rows than parameters, collinear regressors
            or instruments after demeaning, or fewer than two clusters for
            a clustered variance.
        """
        coverage: tuple[str, ...] = ()
        if isinstance(data, PanelTable):
            coverage = data.coverage
            data = data.to_frame()

        sample = self._sample(spec, data)
        try:
            result = self._fit(spec, sample)
        except np.linalg.LinAlgError as exc:
            raise IdentificationError(f"Linear algebra failure: {exc}") from exc

        result = EstimationResult(**{**result, "coverage": coverage, "spec": spec})
        logger.info("%s  [%s]", summarize_fit(result), spec.formula)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _sample(self, spec: RegressionSpec, df: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in spec.columns if col not in df.columns]
        if missing:
            raise SchemaError(
                f"Missing required columns: {missing}. Available: {sorted(map(str, df.columns))}"
            )
        numeric = [spec.outcome, *spec.endogenous, *spec.instruments, *spec.controls]
        bad = [col for col in numeric if not pd.api.types.is_numeric_dtype(df[col])]
        if bad:
            raise SchemaError(f"Non-numeric regression columns: {bad}")

        sample = df[spec.columns].dropna()
        n_dropped = len(df) - len(sample)
        if n_dropped:
            logger.info(
                "Dropped %s of %s rows with missing values for %s",
                f"{n_dropped:,}",
                f"{len(df):,}",
                spec.outcome,
            )
        if sample.empty:
            raise IdentificationError("No complete observations")
        return sample

    def _fit(self, spec: RegressionSpec, sample: pd.DataFrame) -> dict:
        numeric = list(dict.fromkeys(
            [spec.outcome, *spec.endogenous, *spec.instruments, *spec.controls]
        ))
        fe = self._fe.transform(sample, numeric, list(spec.fixed_effects))
        dm = fe.values

        n = len(sample)
        regressors = list(spec.regressors)
        instruments = list(spec.instruments) + list(spec.controls)
        k = len(regressors)
        dof_model = k + fe.dof_absorbed
        if n <= dof_model:
            raise IdentificationError(
                f"{n:,} observations for {dof_model:,} parameters "
                f"({k} regressors + {fe.dof_absorbed:,} absorbed)"
            )

        y = dm[spec.outcome].to_numpy()
        X = dm[regressors].to_numpy()
        _check_full_rank(X, regressors, sample[regressors].to_numpy(dtype=float), "regressors")

        if spec.is_iv:
            Z = dm[instruments].to_numpy()
            _check_full_rank(Z, instruments, sample[instruments].to_numpy(dtype=float), "instruments")
            Xhat = Z @ np.linalg.lstsq(Z, X, rcond=None)[0]
            if np.linalg.matrix_rank(Xhat / np.maximum(np.linalg.norm(Xhat, axis=0), 1e-300)) < k:
                raise IdentificationError(
                    f"Instruments {list(spec.instruments)} do not move {list(spec.endogenous)} "
                    "after partialling out controls and fixed effects"
                )
        else:
            Z = X
            Xhat = X

        XtX = Xhat.T @ Xhat
        bread = np.linalg.inv(XtX)
        beta = bread @ (Xhat.T @ y)
        resid = y - X @ beta

        sigma2 = float(resid @ resid) / (n - dof_model)
        vcov_naive = sigma2 * bread

        n_clusters = None
        df_resid = n - dof_model
        if spec.vcov == "cluster":
            codes, uniques = pd.factorize(sample[spec.cluster], sort=True)
            n_clusters = len(uniques)
            if n_clusters < 2:
                raise IdentificationError(
                    f"Clustered variance undefined with {n_clusters} cluster in {spec.cluster!r}"
                )
            vcov = self._cluster_vcov(Xhat, resid, bread, codes, n_clusters, n, k, fe, sample, spec)
            df_resid = n_clusters - 1
        else:
            vcov = vcov_naive
            if spec.cluster is not None:
                n_clusters = int(sample[spec.cluster].nunique())

        se_all = np.sqrt(np.clip(np.diag(vcov), 0, None))
        se_naive_all = np.sqrt(np.clip(np.diag(vcov_naive), 0, None))

        j = regressors.index(spec.focal)
        coef, se = float(beta[j]), float(se_all[j])
        z = stats.norm.ppf(0.5 + self.ci / 2)
        t_stat = coef / se if se > 0 else np.nan
        p_value = float(2 * stats.t.sf(abs(t_stat), df_resid)) if np.isfinite(t_stat) else np.nan

        diagnostics = self._diagnostics(spec, dm, Z, resid, fe, sample, n, n_clusters)

        return {
            "term": spec.focal,
            "coefficient": coef,
            "std_error": se,
            "ci_lower": coef - z * se,
            "ci_upper": coef + z * se,
            "p_value": p_value,
            "n_obs": n,
            "n_clusters": n_clusters,
            "vcov_type": spec.vcov,
            "std_error_naive": float(se_naive_all[j]),
            "diagnostics": diagnostics,
            "coefficients": pd.Series(beta, index=regressors, name="coefficient"),
            "std_errors": pd.Series(se_all, index=regressors, name="std_error"),
            "vcov": pd.DataFrame(vcov, index=regressors, columns=regressors),
        }

    def _small_sample_factor(
        self,
        n: int,
        k: int,
        n_clusters: int,
        fe: DemeanResult,
        sample: pd.DataFrame,
        spec: RegressionSpec,
    ) -> float:
        if not self.small_sample:
            return 1.0
        nested = [
            g
            for g in spec.fixed_effects
            if g == spec.cluster or sample.groupby(g)[spec.cluster].nunique().max() == 1
        ]
        # A nested group still costs one parameter.
        n_nested_levels = sum(fe.n_levels[g] for g in nested)
        k_eff = k + max(fe.dof_absorbed - n_nested_levels + len(nested), 0)
        return n_clusters / (n_clusters - 1) * (n - 1) / max(n - k_eff, 1)

    def _cluster_vcov(
        self,
        Xhat: np.ndarray,
        resid: np.ndarray,
        bread: np.ndarray,
        codes: np.ndarray,
        n_clusters: int,
        n: int,
        k: int,
        fe: DemeanResult,
        sample: pd.DataFrame,
        spec: RegressionSpec,
    ) -> np.ndarray:
        meat = _cluster_meat(Xhat * resid[:, None], codes, n_clusters)
        factor = self._small_sample_factor(n, k, n_clusters, fe, sample, spec)
        return factor * bread @ meat @ bread

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _diagnostics(
        self,
        spec: RegressionSpec,
        dm: pd.DataFrame,
        Z: np.ndarray,
        resid: np.ndarray,
        fe: DemeanResult,
        sample: pd.DataFrame,
        n: int,
        n_clusters: int | None,
    ) -> dict:
        diag: dict = {
            "n_singletons": fe.n_singletons,
            "fe_converged": fe.converged,
            "fe_iterations": fe.n_iter,
        }
        if not spec.is_iv:
            diag.update({
                "first_stage_f": np.nan,
                "first_stage_f_robust": np.nan,
                "first_stage_t": np.nan,
                "sargan_stat": np.nan,
                "sargan_pvalue": np.nan,
                "overid": "unavailable: not an IV regression",
            })
            return diag

        first_stage = {
            endog: self._first_stage(spec, dm, Z, endog, fe, sample, n, n_clusters)
            for endog in spec.endogenous
        }
        diag["first_stage"] = first_stage
        lead = spec.focal if spec.focal in first_stage else spec.endogenous[0]
        diag.update({
            "first_stage_f": first_stage[lead]["f"],
            "first_stage_f_robust": first_stage[lead]["f_robust"],
            "first_stage_t": first_stage[lead]["t"],
        })

        n_excluded = len(spec.instruments)
        n_endog = len(spec.endogenous)
        if n_excluded > n_endog:
            fitted = Z @ np.linalg.lstsq(Z, resid, rcond=None)[0]
            uu = float(resid @ resid)
            sargan = n * float(fitted @ fitted) / uu if uu > 0 else np.nan
            dof = n_excluded - n_endog
            diag.update({
                "sargan_stat": sargan,
                "sargan_pvalue": float(stats.chi2.sf(sargan, dof)) if np.isfinite(sargan) else np.nan,
                "overid": "ok" if np.isfinite(sargan) else "unavailable: zero residual variance",
            })
        else:
            diag.update({
                "sargan_stat": np.nan,
                "sargan_pvalue": np.nan,
                "overid": "unavailable: exactly identified",
            })
        return diag

    def _first_stage(
        self,
        spec: RegressionSpec,
        dm: pd.DataFrame,
        Z: np.ndarray,
        endog: str,
        fe: DemeanResult,
        sample: pd.DataFrame,
        n: int,
        n_clusters: int | None,
    ) -> dict:
        """Excluded-instrument strength for one endogenous regressor.

        ``f`` is the conventional partial F; ``f_robust`` is the Wald F on
        the excluded-instrument coefficients under the fit's variance type;
        ``t`` is the signed robust t-statistic when there is one instrument.
        """
        q = len(spec.instruments)
        x = dm[endog].to_numpy()
        pi, *_ = np.linalg.lstsq(Z, x, rcond=None)
        e_u = x - Z @ pi
        rss_u = float(e_u @ e_u)

        if spec.controls:
            W = dm[list(spec.controls)].to_numpy()
            e_r = x - W @ np.linalg.lstsq(W, x, rcond=None)[0]
            rss_r = float(e_r @ e_r)
        else:
            rss_r = float(x @ x)

        df_u = n - Z.shape[1] - fe.dof_absorbed
        f_conv = ((rss_r - rss_u) / q) / (rss_u / df_u) if rss_u > 0 and df_u > 0 else np.inf

        bread = np.linalg.inv(Z.T @ Z)
        if spec.vcov == "cluster":
            codes = pd.factorize(sample[spec.cluster], sort=True)[0]
            meat = _cluster_meat(Z * e_u[:, None], codes, n_clusters)
            factor = self._small_sample_factor(n, Z.shape[1], n_clusters, fe, sample, spec)
            V = factor * bread @ meat @ bread
        else:
            V = (rss_u / max(df_u, 1)) * bread

        pi_ex = pi[:q]
        V_ex = V[:q, :q]
        try:
            f_robust = float(pi_ex @ np.linalg.solve(V_ex, pi_ex)) / q
        except np.linalg.LinAlgError:
            f_robust = np.nan
        t = float(pi_ex[0] / np.sqrt(V_ex[0, 0])) if q == 1 and V_ex[0, 0] > 0 else np.nan

        if np.isfinite(f_conv) and f_conv < 10:
            logger.warning("Weak first stage for %s: F = %.2f", endog, f_conv)
        return {"f": float(f_conv), "f_robust": f_robust, "t": t}
