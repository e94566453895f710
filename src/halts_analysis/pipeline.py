"""Run the trading-halts count-model study end to end."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import pandas as pd

from config.config import N_OBSERVATIONS, OUTPUT_DIR, RANDOM_SEED, STRESS_VOLATILITY, STRESS_VOLUME

from .common import ensure_outdir, save_summary, write_json
from .count_models import NEGBIN, CountModelFits, DispersionCheck, ModelSelection, fit_count_models, select_model
from .errors import HaltsAnalysisError
from .simulation import generate_market_data, summarize_dataset
from .stress import stress_test
from .visualize import calibration_frame, marginal_effect_grid, plot_results

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class AnalysisResult:
    n: int
    seed: int
    data: pd.DataFrame = field(repr=False)
    fits: CountModelFits
    selection: ModelSelection
    marginal: pd.DataFrame = field(repr=False)
    calibration: pd.DataFrame = field(repr=False)
    stress_prediction: float

    @property
    def dispersion(self) -> DispersionCheck:
        return self.fits.dispersion


def run_analysis(n: int = N_OBSERVATIONS, seed: int = RANDOM_SEED) -> AnalysisResult:
    logger.info("Generating synthetic data (n=%s, seed=%s)", n, seed)
    df = generate_market_data(n=n, seed=seed)

    logger.info("Fitting GLM models")
    fits = fit_count_models(df)
    selection = select_model(fits.poisson, fits.negbin)

    logger.info("Computing marginal effect and calibration series for %s", selection.best.family)
    marginal = marginal_effect_grid(selection.best, df)
    calibration = calibration_frame(selection.best, df)

    logger.info("Running stress test")
    expected = stress_test(selection.best)

    return AnalysisResult(
        n=n,
        seed=seed,
        data=df,
        fits=fits,
        selection=selection,
        marginal=marginal,
        calibration=calibration,
        stress_prediction=expected,
    )


def format_report(result: AnalysisResult) -> list[str]:
    disp = result.dispersion
    sel = result.selection
    lines = [
        "[1] Generating synthetic data...",
        f"    > Dispersion Check: Mean={disp.mean:.2f} | Var={disp.variance:.2f} | Ratio={disp.ratio:.2f}",
        "",
        "[2] Fitting GLM models...",
        "",
        "[3] Model Comparison (AIC):",
        f"    > Poisson: {sel.poisson.aic:.2f}",
        f"    > NegBin:  {sel.negbin.aic:.2f}",
    ]
    if sel.best.family == NEGBIN:
        lines.append(f"    > RESULT: Negative Binomial preferred (Delta AIC: {sel.delta_aic:.2f})")
    else:
        lines.append("    > RESULT: Poisson preferred")
    lines += [
        "",
        "[4] Generating Plots",
        "",
        f"[5] Stress Test (Vol={STRESS_VOLATILITY:g}, Vol={STRESS_VOLUME:g}):",
        f"    > Expected Halts: {result.stress_prediction:.2f}",
        "",
        "End of Analysis",
    ]
    return lines


def write_report(result: AnalysisResult, validation: dict, out: Path) -> None:
    sel = result.selection
    lines = []
    lines.append("# Trading halts: count model report\n\n")
    lines.append("## Data validation\n")
    lines.append("```json\n" + json.dumps(validation, indent=2) + "\n```\n\n")
    lines.append("## Model comparison (AIC)\n\n")
    lines.append(sel.comparison_table().to_markdown(index=False, floatfmt=".2f"))
    lines.append("\n\n")
    lines.append(f"Selected: **{sel.best.family}** (Delta AIC Poisson - NegBin: {sel.delta_aic:.2f})\n\n")
    lines.append("## Stress test\n\n")
    lines.append(
        f"Volatility={STRESS_VOLATILITY:g}, Volume={STRESS_VOLUME:g}: expected halts {result.stress_prediction:.2f}\n"
    )
    (out / "analysis_report.md").write_text("".join(lines), encoding="utf-8")


def save_outputs(result: AnalysisResult, out: Path, show: bool = False) -> None:
    out = ensure_outdir(out)
    validation = summarize_dataset(result.data)
    write_json(out / "data_validation.json", validation)
    save_summary(result.fits.poisson.summary_text, out / "model_poisson.txt")
    save_summary(result.fits.negbin.summary_text, out / "model_negbin.txt")
    result.selection.comparison_table().to_csv(out / "aic_comparison.csv", index=False)
    result.marginal.to_csv(out / "marginal_effect.csv", index=False)
    plot_results(
        result.selection.best,
        result.data,
        path=out / "halts_analysis.png",
        show=show,
        grid=result.marginal,
        calib=result.calibration,
    )
    write_report(result, validation, out)
    logger.info("Outputs saved to %s", out)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Simulate trading-halt counts, compare Poisson and Negative Binomial "
            "GLMs by AIC and stress-test the preferred model."
        )
    )
    parser.add_argument("--n", type=int, default=N_OBSERVATIONS, help="Number of simulated observations.")
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Seed for the data generator.")
    parser.add_argument(
        "--out",
        type=Path,
        nargs="?",
        const=OUTPUT_DIR,
        default=None,
        help=(
            "Directory for plots, model summaries and the markdown report "
            "(bare --out uses HALTS_OUTPUT_DIR, default outputs/). Nothing is written when omitted."
        ),
    )
    parser.add_argument("--show", action="store_true", help="Display the plots interactively.")
    parser.add_argument(
        "--log-level", type=str.upper, choices=LOG_LEVELS, default="INFO", help="Logging level (default: INFO)."
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="[%(asctime)s] %(levelname)s:%(message)s")

    try:
        result = run_analysis(n=args.n, seed=args.seed)
        for line in format_report(result):
            print(line)
        if args.out is not None:
            save_outputs(result, args.out, show=args.show)
        elif args.show:
            plot_results(
                result.selection.best, result.data, show=True, grid=result.marginal, calib=result.calibration
            )
    except HaltsAnalysisError as exc:
        logger.error("Analysis failed: %s", exc)
        raise SystemExit(f"Analysis failed: {exc}") from exc


if __name__ == "__main__":
    main()
