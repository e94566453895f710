"""Pytest configuration and shared fixtures."""

import matplotlib

matplotlib.use("Agg")

import pytest

from halts_analysis.count_models import fit_count_models, select_model
from halts_analysis.simulation import generate_market_data


@pytest.fixture(scope="session")
def market_data():
    """The default study dataset: 1000 simulated days, seed 2025."""
    return generate_market_data(n=1000, seed=2025)


@pytest.fixture(scope="session")
def count_fits(market_data):
    return fit_count_models(market_data)


@pytest.fixture(scope="session")
def selection(count_fits):
    return select_model(count_fits.poisson, count_fits.negbin)


@pytest.fixture(scope="session")
def best_model(selection):
    return selection.best
