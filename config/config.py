"""Project-wide configuration for the trading-halts count-model study.

Update these values to change the simulated market, the estimation controls or
the stress scenario.
"""

import os
from pathlib import Path

# Directory for saved artifacts (plots, summaries, reports) when --out is given without a path
OUTPUT_DIR = Path(os.getenv("HALTS_OUTPUT_DIR", "outputs"))

# Sample size and seed for the synthetic market
N_OBSERVATIONS = int(os.getenv("HALTS_N_OBSERVATIONS", "1000"))
RANDOM_SEED = int(os.getenv("HALTS_RANDOM_SEED", "2025"))

# Covariate distributions (VIX-like volatility proxy and standardized volume)
VOLATILITY_MEAN = 20.0
VOLATILITY_SD = 5.0
VOLUME_MEAN = 100.0
VOLUME_SD = 15.0

# Data-generating process on the log scale; theta < inf means overdispersion
TRUE_INTERCEPT = -2.5
TRUE_BETA_VOLATILITY = 0.08
TRUE_BETA_VOLUME = 0.01
TRUE_THETA = 1.5

# Negative Binomial estimation (alternating IRLS / theta profile likelihood)
NB_MAX_ITER = 25
NB_TOL = 1e-8
THETA_BOUNDS = (1e-4, 1e6)

# Marginal-effect grid and normal-approximation band
GRID_POINTS = 200
CI_Z = 1.96
PLOT_DPI = 160

# Extreme-stress scenario
STRESS_VOLATILITY = 35.0
STRESS_VOLUME = 150.0
