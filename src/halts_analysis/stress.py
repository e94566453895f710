from __future__ import annotations

import numpy as np
import pandas as pd

from config.config import STRESS_VOLATILITY, STRESS_VOLUME

from .count_models import FittedCountModel
from .errors import PredictionError


def stress_test(model: FittedCountModel, volatility: float = STRESS_VOLATILITY, volume: float = STRESS_VOLUME) -> float:
    """Expected halts for a single extreme scenario."""
    scenario = pd.DataFrame({"Volatility": [volatility], "Volume": [volume]})
    expected = float(model.predict_response(scenario)[0])
    if not np.isfinite(expected) or expected <= 0:
        raise PredictionError(
            "stress prediction is not a positive finite count",
            model=model.family,
            volatility=volatility,
            volume=volume,
            prediction=expected,
        )
    return expected
