"""
Feature Derivation
==================

Turns a price series into the three normalised features the engine
consumes. Each feature is scaled to a bounded range so that the fuzzy sets
and HMM emissions can use fixed parameters across instruments:

    trend_slope  tanh(regression drift over the window / (sigma * sqrt(window)))
    momentum     tanh(half-window log return / (sigma * sqrt(half)))
    volatility   expanding percentile rank of rolling return volatility

sigma is the rolling standard deviation of log returns, so slope and
momentum are z-scores of drift against random-walk dispersion.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

import numpy as np
import pandas as pd
from scipy import stats

from regime_fusion.config import Config
from regime_fusion.core import FEATURE_NAMES, FeatureVector
from regime_fusion.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


def compute_log_returns(prices: pd.Series) -> pd.Series:
    """Log returns of a positive price series (first value is NaN)."""
    return np.log(prices).diff()


def _regression_slope(values: np.ndarray) -> float:
    """OLS slope of values against their position."""
    x = np.arange(len(values), dtype=float)
    return stats.linregress(x, values).slope


def compute_feature_frame(prices: Any, window: int = Config.FEATURE_WINDOW) -> pd.DataFrame:
    """
    Derive normalised features from prices.

    Args:
        prices: Price series (Series keeps its index; arrays get a range index)
        window: Rolling window in bars (>= 2)

    Returns:
        DataFrame with trend_slope, momentum and volatility columns; rows
        without a full window are dropped

    Raises:
        InvalidInputError: If prices are empty, non-finite, non-positive or
            shorter than window + 1
    """
    if window < 2:
        raise InvalidInputError(f"window must be >= 2, got {window}")

    if isinstance(prices, pd.Series):
        series = prices.astype(float)
    else:
        series = pd.Series(np.asarray(prices, dtype=float).reshape(-1))

    if series.empty:
        raise InvalidInputError("Price series is empty")
    if not np.all(np.isfinite(series.values)):
        raise InvalidInputError("Price series contains NaN or Inf")
    if np.any(series.values <= 0):
        raise InvalidInputError("Prices must be positive")
    if len(series) < window + 1:
        raise InvalidInputError(
            f"Need at least {window + 1} prices for window={window}, got {len(series)}"
        )

    log_prices = np.log(series)
    returns = compute_log_returns(series)
    sigma = returns.rolling(window).std().clip(lower=1e-12)

    slope = log_prices.rolling(window).apply(_regression_slope, raw=True)
    trend_slope = np.tanh(slope * window / (sigma * np.sqrt(window)))

    half = max(window // 2, 1)
    momentum = np.tanh(log_prices.diff(half) / (sigma * np.sqrt(half)))

    volatility = sigma.expanding().rank(pct=True)

    frame = pd.DataFrame({
        'trend_slope': trend_slope,
        'momentum': momentum,
        'volatility': volatility,
    }).dropna()

    logger.debug(f"Derived {len(frame)} feature rows from {len(series)} prices (window={window})")
    return frame


def frame_to_features(frame: pd.DataFrame) -> Iterator[FeatureVector]:
    """
    Yield one FeatureVector per row.

    Raises:
        InvalidInputError: If a feature column is missing
    """
    missing = [c for c in FEATURE_NAMES if c not in frame.columns]
    if missing:
        raise InvalidInputError(f"Feature frame missing columns: {', '.join(missing)}")
    for row in frame[list(FEATURE_NAMES)].itertuples(index=False):
        yield FeatureVector(*row)


__all__ = [
    'compute_log_returns',
    'compute_feature_frame',
    'frame_to_features',
]
