"""Tests for the Poisson and Negative Binomial fitters"""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from halts_analysis import count_models
from halts_analysis.count_models import (
    NEGBIN,
    POISSON,
    dispersion_check,
    fit_negative_binomial,
    fit_poisson,
    negbin_loglike,
    theta_ml,
)
from halts_analysis.errors import FitFailure, PredictionError
from halts_analysis.simulation import generate_market_data


class TestDispersionCheck:
    """Variance-to-mean diagnostic"""

    def test_ratio_matches_sample_moments(self, market_data):
        check = dispersion_check(market_data)
        y = market_data["TradingHalts"]
        assert check.mean == pytest.approx(y.mean())
        assert check.variance == pytest.approx(y.var(ddof=1))
        assert check.ratio == pytest.approx(y.var(ddof=1) / y.mean())

    def test_default_dataset_is_overdispersed(self, count_fits):
        assert count_fits.dispersion.ratio > 1
        assert count_fits.dispersion.overdispersed

    def test_overdispersion_across_seeds(self):
        ratios = [dispersion_check(generate_market_data(n=1000, seed=s)).ratio for s in range(20)]
        assert sum(r > 1 for r in ratios) >= 18

    def test_zero_mean_response_fails(self):
        df = pd.DataFrame({"TradingHalts": [0, 0, 0], "Volatility": [1.0, 2.0, 3.0], "Volume": [3.0, 1.0, 2.0]})
        with pytest.raises(FitFailure, match="zero mean"):
            dispersion_check(df)


class TestPoissonFit:
    """Baseline Poisson GLM"""

    def test_parameters_and_aic(self, count_fits):
        pois = count_fits.poisson
        assert pois.family == POISSON
        assert list(pois.params.index) == ["const", "Volatility", "Volume"]
        assert pois.parameter_count == 3
        assert pois.theta is None
        assert pois.aic == 2 * 3 - 2 * pois.log_likelihood

    def test_log_likelihood_is_full_poisson_likelihood(self, market_data, count_fits):
        pois = count_fits.poisson
        expected = stats.poisson.logpmf(market_data["TradingHalts"], pois.fittedvalues).sum()
        assert pois.llf == pytest.approx(expected, rel=1e-10)

    def test_singular_design_fails(self):
        df = generate_market_data(n=200, seed=5)
        df["Volume"] = 2 * df["Volatility"]
        with pytest.raises(FitFailure) as exc:
            fit_poisson(df)
        assert exc.value.model == POISSON
        assert "singular" in str(exc.value)

    def test_irls_non_convergence_fails(self, market_data, monkeypatch):
        class StuckGLM:
            def __init__(self, endog, exog, family):
                self.exog = exog

            def fit(self, start_params=None):
                params = pd.Series(0.0, index=self.exog.columns)
                return SimpleNamespace(converged=False, fit_history={"deviance": [1.0] * 100}, params=params)

        monkeypatch.setattr(count_models.sm, "GLM", StuckGLM)
        with pytest.raises(FitFailure, match="IRLS did not converge") as exc:
            fit_poisson(market_data)
        assert exc.value.context["iterations"] == 100

    def test_non_finite_coefficients_fail(self, market_data, monkeypatch):
        class DivergedGLM:
            def __init__(self, endog, exog, family):
                self.exog = exog

            def fit(self, start_params=None):
                params = pd.Series([np.nan, 0.1, np.inf], index=self.exog.columns)
                return SimpleNamespace(converged=True, fit_history={}, params=params)

        monkeypatch.setattr(count_models.sm, "GLM", DivergedGLM)
        with pytest.raises(FitFailure, match="non-finite coefficient"):
            fit_poisson(market_data)


class TestNegativeBinomialFit:
    """Alternating IRLS / profile-likelihood estimation"""

    def test_parameters_and_aic(self, count_fits):
        nb = count_fits.negbin
        assert nb.family == NEGBIN
        assert nb.parameter_count == 4
        assert nb.aic == 2 * 4 - 2 * nb.log_likelihood
        assert nb.converged
        assert 1 <= nb.n_iter <= 25

    def test_recovers_generating_process(self, count_fits):
        nb = count_fits.negbin
        assert 0.8 < nb.theta < 3.0
        assert nb.params["Volatility"] == pytest.approx(0.08, abs=0.03)
        assert nb.params["Volatility"] > 0

    def test_log_likelihood_consistent_with_theta(self, market_data, count_fits):
        nb = count_fits.negbin
        y = market_data["TradingHalts"].to_numpy(dtype=float)
        assert nb.llf == pytest.approx(negbin_loglike(y, nb.fittedvalues, nb.theta))

    def test_nests_poisson(self, count_fits):
        assert count_fits.negbin.llf >= count_fits.poisson.llf

    def test_theta_is_profile_maximum(self, market_data, count_fits):
        nb = count_fits.negbin
        y = market_data["TradingHalts"].to_numpy(dtype=float)
        at_hat = negbin_loglike(y, nb.fittedvalues, nb.theta)
        assert at_hat >= negbin_loglike(y, nb.fittedvalues, nb.theta * 1.05)
        assert at_hat >= negbin_loglike(y, nb.fittedvalues, nb.theta * 0.95)

    def test_underdispersed_data_fails(self):
        rng = np.random.default_rng(0)
        n = 300
        df = pd.DataFrame(
            {
                "TradingHalts": np.tile([1, 2], n // 2),
                "Volatility": rng.normal(20, 5, n),
                "Volume": rng.normal(100, 15, n),
            }
        )
        with pytest.raises(FitFailure) as exc:
            fit_negative_binomial(df)
        assert exc.value.model == NEGBIN

    def test_theta_without_interior_maximum_diverges(self):
        rng = np.random.default_rng(1)
        y = np.tile([1.0, 2.0], 150)
        mu = np.full_like(y, y.mean()) * rng.uniform(0.95, 1.05, y.size)
        with pytest.raises(FitFailure, match="diverged"):
            theta_ml(y, mu)

    def test_theta_interior_maximum_accepted(self, market_data, count_fits):
        y = market_data["TradingHalts"].to_numpy(dtype=float)
        theta = theta_ml(y, count_fits.poisson.fittedvalues)
        assert 0.5 < theta < 5.0

    def test_iteration_cap_fails_without_partial_model(self, market_data):
        with pytest.raises(FitFailure, match="did not converge"):
            fit_negative_binomial(market_data, max_iter=1)

    @pytest.mark.parametrize("n", [1000, 400])
    def test_start_from_other_dataset_fails(self, count_fits, n):
        other = generate_market_data(n=n, seed=99)
        with pytest.raises(FitFailure, match="another dataset") as exc:
            fit_negative_binomial(other, poisson=count_fits.poisson)
        assert exc.value.model == NEGBIN


class TestPrediction:
    """Shared prediction interface"""

    def test_link_standard_errors(self, count_fits, market_data):
        for model in [count_fits.poisson, count_fits.negbin]:
            fit, se = model.predict_link(market_data.head(10))
            assert fit.shape == (10,)
            assert (se > 0).all()

    def test_response_matches_fitted_values(self, count_fits, market_data):
        for model in [count_fits.poisson, count_fits.negbin]:
            np.testing.assert_allclose(model.predict_response(market_data), model.fittedvalues, rtol=1e-8)

    def test_overflow_raises_with_input_echoed(self, count_fits):
        scenario = pd.DataFrame({"Volatility": [1e6], "Volume": [100.0]})
        with pytest.raises(PredictionError) as exc:
            count_fits.negbin.predict_response(scenario)
        assert exc.value.context["rows"] == [{"Volatility": 1e6, "Volume": 100.0}]
        assert "1000000.0" in str(exc.value)

    def test_non_finite_covariates_raise(self, count_fits):
        scenario = pd.DataFrame({"Volatility": [np.nan, 20.0], "Volume": [100.0, 100.0]})
        with pytest.raises(PredictionError, match="non-finite"):
            count_fits.poisson.predict_response(scenario)

    def test_missing_covariate_raises(self, count_fits):
        with pytest.raises(PredictionError, match="missing"):
            count_fits.poisson.predict_link(pd.DataFrame({"Volatility": [20.0]}))
