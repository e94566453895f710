"""Synthetic market-microstructure data for the trading-halts study.

The real halt records are proprietary, so the analysis runs on a simulated
panel with the same structure: a VIX-like volatility proxy, a standardized
volume measure and an overdispersed count of halts driven by both through a
log link.
"""

from __future__ import annotations

import hashlib
import logging
import numbers

import numpy as np
import pandas as pd

from config.config import (
    N_OBSERVATIONS,
    RANDOM_SEED,
    TRUE_BETA_VOLATILITY,
    TRUE_BETA_VOLUME,
    TRUE_INTERCEPT,
    TRUE_THETA,
    VOLATILITY_MEAN,
    VOLATILITY_SD,
    VOLUME_MEAN,
    VOLUME_SD,
)

from .common import COVARIATES, RESPONSE
from .errors import GenerationError

logger = logging.getLogger(__name__)


def _check_inputs(n, seed) -> None:
    if isinstance(n, bool) or not isinstance(n, numbers.Integral):
        raise GenerationError("sample size must be an integer", n=n, seed=seed)
    if n <= 0:
        raise GenerationError("sample size must be positive", n=n, seed=seed)
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, numbers.Integral)):
        raise GenerationError("seed must be an integer", n=n, seed=seed)


def generate_market_data(
    n: int = N_OBSERVATIONS,
    seed: int | None = RANDOM_SEED,
    rng: np.random.Generator | None = None,
) -> pd.DataFrame:
    """Simulate ``n`` days of halt counts with volatility and volume covariates.

    Halts follow a Negative Binomial with mean ``mu`` and shape ``theta``
    (variance ``mu + mu**2 / theta``). Draws come from ``rng`` when given,
    otherwise from a fresh PCG64 generator seeded with ``seed``.
    """
    _check_inputs(n, seed)
    if rng is None:
        rng = np.random.default_rng(seed)

    volatility = rng.normal(VOLATILITY_MEAN, VOLATILITY_SD, size=n)
    volume = rng.normal(VOLUME_MEAN, VOLUME_SD, size=n)

    log_mu = TRUE_INTERCEPT + TRUE_BETA_VOLATILITY * volatility + TRUE_BETA_VOLUME * volume
    mu = np.exp(log_mu)

    # numpy parameterizes by (n successes, p); p = theta / (theta + mu) gives mean mu
    halts = rng.negative_binomial(TRUE_THETA, TRUE_THETA / (TRUE_THETA + mu)).astype(np.int64)

    df = pd.DataFrame({RESPONSE: halts, "Volatility": volatility, "Volume": volume})
    logger.info("Generated %d synthetic observations (seed=%s)", n, seed)
    return df


def dataset_fingerprint(df: pd.DataFrame) -> str:
    hashed = pd.util.hash_pandas_object(df[[RESPONSE] + COVARIATES], index=False)
    return hashlib.sha1(hashed.to_numpy().tobytes()).hexdigest()


def summarize_dataset(df: pd.DataFrame) -> dict:
    y = df[RESPONSE]
    return {
        "rows_total": int(len(df)),
        "halts_mean": float(y.mean()),
        "halts_var": float(y.var(ddof=1)),
        "halts_max": int(y.max()),
        "share_zero_halts": float((y == 0).mean()),
        "negative_counts": bool((y < 0).any()),
        "volatility_range": [float(df["Volatility"].min()), float(df["Volatility"].max())],
        "volume_range": [float(df["Volume"].min()), float(df["Volume"].max())],
        "missing_by_col": {k: int(v) for k, v in df.isna().sum().to_dict().items()},
    }
