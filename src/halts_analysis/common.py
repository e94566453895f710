from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import statsmodels.api as sm

RESPONSE = "TradingHalts"
COVARIATES = ["Volatility", "Volume"]


def ensure_outdir(out: Path) -> Path:
    out = Path(out)
    out.mkdir(parents=True, exist_ok=True)
    return out


def write_json(path: Path, obj: dict) -> None:
    path.write_text(json.dumps(obj, indent=2, default=str), encoding="utf-8")


def save_summary(summary_text: str, path: Path) -> None:
    path.write_text(summary_text, encoding="utf-8")


def design_matrix(df: pd.DataFrame) -> pd.DataFrame:
    """Intercept plus covariates, in the column order the models are fit with."""
    X = df[COVARIATES].astype(float)
    return sm.add_constant(X, has_constant="add")


def response_vector(df: pd.DataFrame) -> np.ndarray:
    return df[RESPONSE].to_numpy(dtype=float)
