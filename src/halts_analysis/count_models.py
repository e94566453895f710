from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import optimize, special

from config.config import NB_MAX_ITER, NB_TOL, THETA_BOUNDS

from .common import COVARIATES, design_matrix, response_vector
from .errors import FitFailure, PredictionError
from .simulation import dataset_fingerprint

logger = logging.getLogger(__name__)

POISSON = "Poisson"
NEGBIN = "NegativeBinomial"

# Largest linear predictor whose exp() is still a finite double
MAX_LINK = float(np.log(np.finfo(float).max))


@dataclass(frozen=True, eq=False)
class FittedCountModel:
    """A fitted log-link count regression, either Poisson or Negative Binomial.

    ``theta`` is the Negative Binomial shape (None for Poisson) and counts as an
    extra estimated parameter in the AIC.
    """

    family: str
    params: pd.Series
    cov_params: pd.DataFrame
    llf: float
    nobs: int
    fittedvalues: np.ndarray = field(repr=False)
    dataset_id: str = field(repr=False)
    theta: float | None = None
    converged: bool = True
    n_iter: int = 1
    summary_text: str = field(default="", repr=False)

    @property
    def parameter_count(self) -> int:
        return len(self.params) + (1 if self.theta is not None else 0)

    @property
    def log_likelihood(self) -> float:
        return self.llf

    @property
    def aic(self) -> float:
        return 2 * self.parameter_count - 2 * self.llf

    def _exog(self, exog: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in COVARIATES if c not in exog.columns]
        if missing:
            raise PredictionError("covariates missing from prediction input", missing=missing)
        X = design_matrix(exog)
        if not np.isfinite(X.to_numpy()).all():
            bad = exog.loc[~np.isfinite(X[COVARIATES].to_numpy()).all(axis=1), COVARIATES]
            raise PredictionError(
                "non-finite covariate values", model=self.family, rows=bad.to_dict(orient="records")
            )
        return X[self.params.index]

    def predict_link(self, exog: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
        """Linear predictor and its delta-method standard error, ``sqrt(x' V x)``."""
        X = self._exog(exog).to_numpy()
        V = self.cov_params.loc[self.params.index, self.params.index].to_numpy()
        fit = X @ self.params.to_numpy()
        se = np.sqrt(np.einsum("ij,jk,ik->i", X, V, X))
        return fit, se

    def predict_response(self, exog: pd.DataFrame) -> np.ndarray:
        fit, _ = self.predict_link(exog)
        overflow = fit > MAX_LINK
        if overflow.any():
            bad = exog.loc[overflow, COVARIATES]
            raise PredictionError(
                "linear predictor overflows exp()",
                model=self.family,
                rows=bad.to_dict(orient="records"),
            )
        return np.exp(fit)


@dataclass(frozen=True)
class DispersionCheck:
    mean: float
    variance: float
    ratio: float

    @property
    def overdispersed(self) -> bool:
        return self.ratio > 1


@dataclass(frozen=True)
class CountModelFits:
    poisson: FittedCountModel
    negbin: FittedCountModel
    dispersion: DispersionCheck


@dataclass(frozen=True)
class ModelSelection:
    best: FittedCountModel
    poisson: FittedCountModel
    negbin: FittedCountModel

    @property
    def delta_aic(self) -> float:
        return self.poisson.aic - self.negbin.aic

    def comparison_table(self) -> pd.DataFrame:
        rows = []
        for m in [self.poisson, self.negbin]:
            rows.append(
                {
                    "model": m.family,
                    "k": m.parameter_count,
                    "logLik": m.llf,
                    "AIC": m.aic,
                    "theta": m.theta if m.theta is not None else np.nan,
                    "selected": m is self.best,
                }
            )
        return pd.DataFrame(rows)


def dispersion_check(df: pd.DataFrame) -> DispersionCheck:
    y = response_vector(df)
    mean_y = float(y.mean())
    var_y = float(y.var(ddof=1)) if len(y) > 1 else float("nan")
    if mean_y <= 0:
        raise FitFailure("dispersion check", "response has zero mean, ratio undefined", nobs=len(y))
    return DispersionCheck(mean=mean_y, variance=var_y, ratio=var_y / mean_y)


def _check_design(X: pd.DataFrame, model: str) -> None:
    rank = int(np.linalg.matrix_rank(X.to_numpy()))
    if rank < X.shape[1]:
        raise FitFailure(model, "design matrix is singular", rank=rank, columns=list(X.columns))


def _fit_glm(y: np.ndarray, X: pd.DataFrame, family, model: str, start_params=None):
    try:
        res = sm.GLM(y, X, family=family).fit(start_params=start_params)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise FitFailure(model, f"IRLS failed: {exc}") from exc
    if not getattr(res, "converged", True):
        raise FitFailure(model, "IRLS did not converge", iterations=len(res.fit_history.get("deviance", [])))
    if not np.isfinite(res.params).all():
        raise FitFailure(model, "non-finite coefficient estimates", params=res.params.to_dict())
    return res


def _result_to_model(res, family: str, dataset_id: str, theta: float | None = None, n_iter: int = 1, llf=None) -> FittedCountModel:
    return FittedCountModel(
        family=family,
        params=res.params.copy(),
        cov_params=res.cov_params().copy(),
        llf=float(res.llf if llf is None else llf),
        nobs=int(res.nobs),
        fittedvalues=np.asarray(res.fittedvalues, dtype=float),
        dataset_id=dataset_id,
        theta=theta,
        converged=True,
        n_iter=n_iter,
        summary_text=res.summary().as_text(),
    )


def fit_poisson(df: pd.DataFrame) -> FittedCountModel:
    y = response_vector(df)
    X = design_matrix(df)
    _check_design(X, POISSON)
    res = _fit_glm(y, X, sm.families.Poisson(), POISSON)
    logger.info("Poisson GLM fitted: logLik=%.4f", res.llf)
    return _result_to_model(res, POISSON, dataset_fingerprint(df))


def negbin_loglike(y: np.ndarray, mu: np.ndarray, theta: float) -> float:
    """Full Negative Binomial log-likelihood with mean ``mu`` and shape ``theta``."""
    return float(
        np.sum(
            special.gammaln(y + theta)
            - special.gammaln(theta)
            - special.gammaln(y + 1)
            + theta * np.log(theta)
            + special.xlogy(y, mu)
            - (theta + y) * np.log(theta + mu)
        )
    )


def theta_ml(y: np.ndarray, mu: np.ndarray, bounds: tuple[float, float] = THETA_BOUNDS) -> float:
    """Profile-likelihood estimate of theta for fixed means, searched on log scale."""
    lo, hi = np.log(bounds[0]), np.log(bounds[1])
    res = optimize.minimize_scalar(
        lambda log_t: -negbin_loglike(y, mu, float(np.exp(log_t))),
        bounds=(lo, hi),
        method="bounded",
        options={"xatol": 1e-10},
    )
    theta = float(np.exp(res.x))
    if not res.success or not np.isfinite(theta) or theta <= 0:
        raise FitFailure(NEGBIN, "theta estimation failed", theta=theta, status=res.message)
    # the profile is flat to rounding near the upper bound, so compare likelihoods
    # rather than positions: no interior maximum means theta diverged
    ll_hat = -float(res.fun)
    edge_tol = 1e-6 * (abs(ll_hat) + 1)
    at_edge = max(negbin_loglike(y, mu, bounds[0]), negbin_loglike(y, mu, bounds[1]))
    if res.x - lo < 1e-3 or at_edge >= ll_hat - edge_tol:
        raise FitFailure(NEGBIN, "theta estimate diverged to its search bound", theta=theta, bounds=bounds)
    return theta


def fit_negative_binomial(
    df: pd.DataFrame,
    max_iter: int = NB_MAX_ITER,
    tol: float = NB_TOL,
    poisson: FittedCountModel | None = None,
) -> FittedCountModel:
    """Jointly estimate coefficients and theta by alternating maximisation.

    Coefficients come from IRLS with theta held fixed, theta from its profile
    likelihood with the means held fixed. Iteration stops once the relative
    change in log-likelihood drops below ``tol``.
    """
    y = response_vector(df)
    X = design_matrix(df)
    _check_design(X, NEGBIN)
    if poisson is None:
        poisson = fit_poisson(df)
    elif poisson.dataset_id != dataset_fingerprint(df):
        raise FitFailure(NEGBIN, "starting Poisson fit belongs to another dataset", rows=len(df), start_nobs=poisson.nobs)

    mu = poisson.fittedvalues
    params = poisson.params.to_numpy()
    theta = theta_ml(y, mu)
    ll_prev = negbin_loglike(y, mu, theta)

    for it in range(1, max_iter + 1):
        res = _fit_glm(y, X, sm.families.NegativeBinomial(alpha=1.0 / theta), NEGBIN, start_params=params)
        params = res.params.to_numpy()
        mu = np.asarray(res.fittedvalues, dtype=float)
        theta = theta_ml(y, mu)
        ll = negbin_loglike(y, mu, theta)
        logger.debug("NB iteration %d: theta=%.6f logLik=%.8f", it, theta, ll)
        if abs(ll - ll_prev) <= tol * (abs(ll) + tol):
            break
        ll_prev = ll
    else:
        raise FitFailure(NEGBIN, "alternating estimation did not converge", max_iter=max_iter, theta=theta, tol=tol)

    res = _fit_glm(y, X, sm.families.NegativeBinomial(alpha=1.0 / theta), NEGBIN, start_params=params)
    llf = negbin_loglike(y, np.asarray(res.fittedvalues, dtype=float), theta)
    logger.info("Negative Binomial GLM fitted: theta=%.4f logLik=%.4f (%d iterations)", theta, llf, it)
    return _result_to_model(res, NEGBIN, dataset_fingerprint(df), theta=theta, n_iter=it, llf=llf)


def fit_count_models(df: pd.DataFrame) -> CountModelFits:
    dispersion = dispersion_check(df)
    logger.info(
        "Dispersion check: mean=%.2f var=%.2f ratio=%.2f", dispersion.mean, dispersion.variance, dispersion.ratio
    )
    poisson = fit_poisson(df)
    negbin = fit_negative_binomial(df, poisson=poisson)
    return CountModelFits(poisson=poisson, negbin=negbin, dispersion=dispersion)


def select_model(poisson: FittedCountModel, negbin: FittedCountModel) -> ModelSelection:
    """Pick the lower-AIC model; an exact tie keeps the simpler Poisson."""
    best = negbin if negbin.aic < poisson.aic else poisson
    logger.info("AIC Poisson=%.2f NegBin=%.2f -> %s", poisson.aic, negbin.aic, best.family)
    return ModelSelection(best=best, poisson=poisson, negbin=negbin)
