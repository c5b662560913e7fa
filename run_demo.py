#!/usr/bin/env python3
"""
Regime Fusion - Demo Runner

Runs the full regime classification engine over a simulated
regime-switching price path whose true regimes are known:

    Stage 1: Simulate prices from a persistent 4-regime Markov chain
    Stage 2: Derive normalised trend, momentum and volatility features
    Stage 3: Classify every bar (fuzzy assessor + online HMM ensemble),
             feeding realised regimes back into the confidence calibrator
             and refreshing the HMM transition matrix from the Dirichlet
             posterior on a slower cadence
    Stage 4: Report accuracy, calibration and the final classification

EXECUTION
    python run_demo.py
    python run_demo.py --bars 2000 --seed 7
    python run_demo.py --settings settings.json --refresh 100

OUTPUT ARTIFACTS
    outputs/
        regime_history.csv        One classification record per bar
        regime_summary.json       Accuracy, calibration and posterior summary
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from regime_fusion import VERSION
from regime_fusion.config import Config, EngineSettings, load_settings
from regime_fusion.core import REGIMES, Regime
from regime_fusion.features import compute_feature_frame
from regime_fusion.pipeline import RegimeClassificationPipeline, format_regime_report


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_BARS: int = 1500
DEFAULT_SEED: int = 42
DEFAULT_REFRESH: int = 250

OUTPUT_DIR = Path("outputs")

# Simulated dynamics per regime: (daily drift, daily volatility, pull to mean)
SIMULATION_PARAMS = {
    Regime.TRENDING: (0.0025, 0.008, 0.0),
    Regime.MEAN_REVERTING: (0.0, 0.006, 0.15),
    Regime.HIGH_VOLATILITY: (-0.001, 0.030, 0.0),
    Regime.TRANSITIONAL: (-0.0015, 0.015, 0.0),
}
SIMULATION_PERSISTENCE: float = 0.97


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def print_subsection(title: str) -> None:
    """Print a subsection divider."""
    print()
    print(f"  {'─' * 75}")
    print(f"  {title}")
    print(f"  {'─' * 75}")


def format_percent(value: float, precision: int = 1) -> str:
    """Format a value as percentage."""
    return f"{value * 100:.{precision}f}%"


# =============================================================================
# STAGE 1: SIMULATION
# =============================================================================

def simulate_prices(n_bars: int, seed: int) -> pd.DataFrame:
    """
    Simulate a price path driven by a hidden regime chain.

    Returns:
        DataFrame with 'close' and the true 'regime' label per bar
    """
    rng = np.random.default_rng(seed)
    n = len(REGIMES)
    A = np.full((n, n), (1.0 - SIMULATION_PERSISTENCE) / (n - 1))
    np.fill_diagonal(A, SIMULATION_PERSISTENCE)

    regimes = np.zeros(n_bars, dtype=int)
    regimes[0] = rng.integers(n)
    for t in range(1, n_bars):
        regimes[t] = rng.choice(n, p=A[regimes[t - 1]])

    log_price = np.zeros(n_bars)
    anchor = 0.0
    for t in range(1, n_bars):
        drift, vol, pull = SIMULATION_PARAMS[Regime(regimes[t])]
        if regimes[t] != regimes[t - 1]:
            anchor = log_price[t - 1]
        reversion = -pull * (log_price[t - 1] - anchor)
        log_price[t] = log_price[t - 1] + drift + reversion + vol * rng.standard_normal()

    index = pd.bdate_range("2015-01-01", periods=n_bars)
    return pd.DataFrame({
        'close': 100.0 * np.exp(log_price),
        'regime': [Regime(r).label for r in regimes],
    }, index=index)


# =============================================================================
# STAGE 3: CLASSIFICATION
# =============================================================================

def run_classification(
    pipeline: RegimeClassificationPipeline,
    features: pd.DataFrame,
    truth: pd.Series,
    refresh_every: int,
    logger: logging.Logger
) -> pd.DataFrame:
    """
    Step the pipeline bar by bar with outcome feedback.

    The realised regime of each bar is recorded after it is classified.
    Every `refresh_every` bars the trailing window is Viterbi-decoded and
    folded into the transition posterior.
    """
    records = []
    X = features.to_numpy()

    for i, (timestamp, row) in enumerate(features.iterrows()):
        result = pipeline.step(row.to_numpy())
        record = result.as_dict()
        record['timestamp'] = timestamp
        record['true_regime'] = truth.loc[timestamp]
        record['correct'] = pipeline.record_outcome(result, truth.loc[timestamp])
        records.append(record)

        if refresh_every > 0 and (i + 1) % refresh_every == 0:
            pipeline.refresh_transitions(X[i + 1 - refresh_every:i + 1])
            logger.debug(f"Transition refresh at bar {i + 1}")

    return pd.DataFrame(records).set_index('timestamp')


# =============================================================================
# MAIN
# =============================================================================

def main() -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()

    parser = argparse.ArgumentParser(
        description="Regime Fusion - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                           # 1500 simulated bars
  python run_demo.py --bars 3000 --seed 7      # Longer path, new seed
  python run_demo.py --settings settings.json  # Custom engine settings
        """
    )

    parser.add_argument(
        "--bars", "-n",
        type=int,
        default=DEFAULT_BARS,
        help=f"Number of simulated bars (default: {DEFAULT_BARS})"
    )

    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=DEFAULT_SEED,
        help=f"Random seed (default: {DEFAULT_SEED})"
    )

    parser.add_argument(
        "--window", "-w",
        type=int,
        default=Config.FEATURE_WINDOW,
        help=f"Feature window in bars (default: {Config.FEATURE_WINDOW})"
    )

    parser.add_argument(
        "--refresh", "-r",
        type=int,
        default=DEFAULT_REFRESH,
        help=f"Bars between transition refreshes, 0 to disable (default: {DEFAULT_REFRESH})"
    )

    parser.add_argument(
        "--settings", "-c",
        type=str,
        default=None,
        help="Path to a JSON settings file"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    print_section_header("REGIME FUSION")
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Simulated Bars:    {args.bars}")
    print(f"  Seed:              {args.seed}")
    print(f"  Feature Window:    {args.window}")
    print(f"  Version:           {VERSION}")

    settings: Optional[EngineSettings] = None
    if args.settings:
        try:
            settings = load_settings(args.settings)
        except (OSError, ValueError) as e:
            logger.error(f"Could not load settings: {e}")
            return 1
        logger.info(f"Loaded settings from {args.settings}")

    # ==========================================================================
    # STAGES 1-2: DATA
    # ==========================================================================

    print_section_header("STAGES 1-2: SIMULATION AND FEATURES")

    try:
        prices = simulate_prices(args.bars, args.seed)
        features = compute_feature_frame(prices['close'], window=args.window)
    except ValueError as e:
        logger.error(f"Feature derivation failed: {e}")
        return 1

    logger.info(f"Simulated {len(prices)} bars, {len(features)} feature rows")
    occupancy = prices['regime'].value_counts(normalize=True)
    for regime in REGIMES:
        print(f"    {regime.label:16} {format_percent(occupancy.get(regime.label, 0.0)):>7}")

    # ==========================================================================
    # STAGE 3: CLASSIFICATION
    # ==========================================================================

    print_section_header("STAGE 3: CLASSIFICATION")

    pipeline = RegimeClassificationPipeline(settings)
    history = run_classification(
        pipeline,
        features,
        prices['regime'],
        refresh_every=args.refresh,
        logger=logger,
    )

    # ==========================================================================
    # STAGE 4: SUMMARY
    # ==========================================================================

    print_section_header("STAGE 4: RESULTS")

    accuracy = float(history['correct'].mean())
    ece = pipeline.calibrator.expected_calibration_error()

    print_subsection("Classification")
    print(f"    Accuracy:            {format_percent(accuracy)}")
    print(f"    Mean Raw Confidence: {format_percent(history['raw_confidence'].mean())}")
    print(f"    Mean Calibrated:     {format_percent(history['confidence'].mean())}")
    print(f"    Mean Agreement:      {format_percent(history['model_agreement'].mean())}")
    print(f"    Calibration Error:   {ece:.3f}")

    print_subsection("Reliability")
    print(pipeline.calibrator.reliability_table().to_string(index=False, float_format="%.3f"))

    print_subsection("Per-Regime Accuracy")
    by_regime = history.groupby('true_regime')['correct'].mean()
    for regime in REGIMES:
        if regime.label in by_regime:
            print(f"    {regime.label:16} {format_percent(by_regime[regime.label]):>7}")

    final = pipeline.step(features.iloc[-1].to_numpy())
    print("\n" + format_regime_report(final, pipeline.estimator))

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    history_path = OUTPUT_DIR / "regime_history.csv"
    history.to_csv(history_path)
    logger.info(f"Saved: {history_path}")

    summary = {
        'version': VERSION,
        'bars': args.bars,
        'seed': args.seed,
        'accuracy': accuracy,
        'expected_calibration_error': ece,
        'per_regime_accuracy': {k: float(v) for k, v in by_regime.items()},
        'transition_posterior': pipeline.estimator.summary(),
        'settings': pipeline.settings.to_dict(),
        'final': final.as_dict(),
    }
    summary_path = OUTPUT_DIR / "regime_summary.json"
    with open(summary_path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info(f"Saved: {summary_path}")

    logger.info(f"Completed in {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
