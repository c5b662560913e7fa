"""
Confidence Calibration
======================

Binned reliability tracking. Each confidence bin records how often
predictions made at that confidence turned out correct, and calibrate()
blends the raw confidence toward the bin's empirical accuracy:

    calibrated = (1 - blend) * raw + blend * accuracy(bin(raw))

Bins with fewer than `min_samples` observations pass the raw value through
unchanged. With `decay` < 1 every bin is multiplied by `decay` before each
update so old evidence fades; the default of 1.0 keeps all history.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np
import pandas as pd

from regime_fusion.config import Config
from regime_fusion.core import CalibrationBin, validate_confidence
from regime_fusion.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)


class ConfidenceCalibrator:
    """
    Map raw ensemble confidence to empirically calibrated confidence.

    update() mutates the bins and is not thread-safe.

    Usage:
        calibrator = ConfidenceCalibrator()
        calibrator.update(result.confidence, result.dominant_regime == realized)
        calibrated = calibrator.calibrate(next_result.confidence)
    """

    def __init__(
        self,
        n_bins: int = Config.N_CALIBRATION_BINS,
        min_samples: int = Config.MIN_CALIBRATION_SAMPLES,
        blend: float = Config.CALIBRATION_BLEND,
        decay: float = Config.CALIBRATION_DECAY
    ):
        """
        Args:
            n_bins: Number of equal-width confidence bins (>= 1)
            min_samples: Bin count required before calibration applies
            blend: Weight on empirical accuracy, in [0, 1]
            decay: Per-update forgetting factor, in (0, 1]
        """
        if n_bins < 1:
            raise InvalidConfigurationError(f"n_bins must be >= 1, got {n_bins}")
        if min_samples < 0:
            raise InvalidConfigurationError(f"min_samples must be >= 0, got {min_samples}")
        if not 0.0 <= blend <= 1.0:
            raise InvalidConfigurationError(f"blend must be in [0, 1], got {blend}")
        if not 0.0 < decay <= 1.0:
            raise InvalidConfigurationError(f"decay must be in (0, 1], got {decay}")

        self.n_bins = int(n_bins)
        self.min_samples = min_samples
        self.blend = float(blend)
        self.decay = float(decay)
        self._bins: List[CalibrationBin] = [CalibrationBin() for _ in range(self.n_bins)]

    @property
    def bins(self) -> List[CalibrationBin]:
        """Copies of the bin statistics, lowest confidence first."""
        return [CalibrationBin(b.count, b.correct_count) for b in self._bins]

    def bin_index(self, confidence: float) -> int:
        """floor(confidence * n_bins), with 1.0 folded into the top bin."""
        confidence = validate_confidence(confidence)
        return min(int(np.floor(confidence * self.n_bins)), self.n_bins - 1)

    def reset(self) -> None:
        """Reinitialise every bin."""
        self._bins = [CalibrationBin() for _ in range(self.n_bins)]

    def update(self, predicted_confidence: float, was_correct: bool) -> None:
        """
        Record the outcome of one prediction.

        Raises:
            InvalidInputError: If the confidence is not a finite value in [0, 1]
        """
        idx = self.bin_index(predicted_confidence)
        if self.decay < 1.0:
            for b in self._bins:
                b.count *= self.decay
                b.correct_count *= self.decay
        target = self._bins[idx]
        target.count += 1.0
        if was_correct:
            target.correct_count += 1.0

    def calibrate(self, raw_confidence: float) -> float:
        """
        Calibrated confidence for a raw value.

        Returns:
            raw_confidence unchanged when its bin is too sparse, otherwise
            the convex blend of raw confidence and bin accuracy
        """
        raw_confidence = validate_confidence(raw_confidence, "raw_confidence")
        b = self._bins[self.bin_index(raw_confidence)]
        if b.count < self.min_samples or b.count <= 0:
            return raw_confidence
        return (1.0 - self.blend) * raw_confidence + self.blend * b.accuracy

    def reliability_table(self) -> pd.DataFrame:
        """
        Per-bin reliability statistics.

        Returns:
            DataFrame with bin bounds, count, correct count, accuracy and
            whether the bin is trusted for calibration
        """
        edges = np.linspace(0.0, 1.0, self.n_bins + 1)
        return pd.DataFrame({
            'lower': edges[:-1],
            'upper': edges[1:],
            'count': [b.count for b in self._bins],
            'correct': [b.correct_count for b in self._bins],
            'accuracy': [b.accuracy if b.count > 0 else np.nan for b in self._bins],
            'trusted': [b.count >= self.min_samples and b.count > 0 for b in self._bins],
        })

    def expected_calibration_error(self) -> float:
        """
        Count-weighted mean |accuracy - bin midpoint| over populated bins.

        Returns 0.0 when nothing has been recorded.
        """
        table = self.reliability_table()
        populated = table[table['count'] > 0]
        if populated.empty:
            return 0.0
        midpoints = (populated['lower'] + populated['upper']) / 2.0
        gaps = (populated['accuracy'] - midpoints).abs()
        return float(np.average(gaps, weights=populated['count']))


__all__ = [
    'ConfidenceCalibrator',
]
