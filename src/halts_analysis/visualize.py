from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from config.config import CI_Z, GRID_POINTS, PLOT_DPI

from .common import RESPONSE
from .count_models import FittedCountModel
from .errors import PredictionError
from .simulation import dataset_fingerprint

logger = logging.getLogger(__name__)


def _check_training_data(model: FittedCountModel, df: pd.DataFrame, message: str) -> None:
    if dataset_fingerprint(df) != model.dataset_id:
        raise PredictionError(message, model=model.family, rows=len(df))


def marginal_effect_grid(
    model: FittedCountModel, df: pd.DataFrame, n_points: int = GRID_POINTS, z: float = CI_Z
) -> pd.DataFrame:
    """Predicted halts across the observed volatility range, volume held at its mean.

    The band is built on the link scale and back-transformed, so it is
    asymmetric around the fitted curve on the count scale.
    """
    _check_training_data(model, df, "marginal effects need the dataset the model was fitted on")
    grid = pd.DataFrame(
        {
            "Volatility": np.linspace(df["Volatility"].min(), df["Volatility"].max(), n_points),
            "Volume": float(df["Volume"].mean()),
        }
    )
    fit, se = model.predict_link(grid)
    grid["LinkFit"] = fit
    grid["LinkSE"] = se
    grid["Predicted"] = np.exp(fit)
    grid["LowerCI"] = np.exp(fit - z * se)
    grid["UpperCI"] = np.exp(fit + z * se)
    return grid


def calibration_frame(model: FittedCountModel, df: pd.DataFrame) -> pd.DataFrame:
    _check_training_data(model, df, "calibration needs the dataset the model was fitted on")
    return pd.DataFrame({"FullPred": model.predict_response(df), RESPONSE: df[RESPONSE].to_numpy()}, index=df.index)


def plot_results(
    model: FittedCountModel,
    df: pd.DataFrame,
    path: Path | None = None,
    show: bool = False,
    grid: pd.DataFrame | None = None,
    calib: pd.DataFrame | None = None,
):
    if grid is None:
        grid = marginal_effect_grid(model, df)
    if calib is None:
        calib = calibration_frame(model, df)

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(12, 5))

    ax1.scatter(df["Volatility"], df[RESPONSE], alpha=0.4, color="grey", s=10)
    ax1.fill_between(grid["Volatility"], grid["LowerCI"], grid["UpperCI"], color="orange", alpha=0.2)
    ax1.plot(grid["Volatility"], grid["Predicted"], color="red", linewidth=1.2)
    ax1.set_title("A. Marginal Effect: Volatility vs Halts\nVolume fixed at Mean (95% CI)", fontweight="bold", fontsize=11)
    ax1.set_xlabel("Volatility Index")
    ax1.set_ylabel("Predicted Halts")

    ax2.scatter(calib["FullPred"], calib[RESPONSE], alpha=0.4, color="skyblue", s=10)
    upper = float(max(calib["FullPred"].max(), calib[RESPONSE].max()))
    ax2.plot([0, upper], [0, upper], linestyle="--", color="black", linewidth=1)
    ax2.set_title("B. Model Calibration\nObserved vs Predicted Counts", fontweight="bold", fontsize=11)
    ax2.set_xlabel("Predicted")
    ax2.set_ylabel("Observed")

    fig.tight_layout()
    if path is not None:
        fig.savefig(path, dpi=PLOT_DPI)
        logger.info("Saved plots to %s", path)
    if show:
        plt.show()
    else:
        plt.close(fig)
    return fig
