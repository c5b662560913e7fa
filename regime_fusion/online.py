"""
Online Regime Filter
====================

Single-pass Bayes filter over a RegimeHMM for real-time use:

    predict:  b_pred = A^T . b_{t-1}
    update:   b_t    = normalise(b_pred * P(y_t | X_t))

Only the current belief vector is carried between ticks. A bounded window
of raw posteriors feeds an exponentially weighted average that is reported
as the smoothed output; smoothing never feeds back into the belief.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Optional

import numpy as np
import pandas as pd

from regime_fusion.config import Config
from regime_fusion.core import REGIMES, RegimeEstimate
from regime_fusion.exceptions import InvalidConfigurationError
from regime_fusion.hmm import RegimeHMM

logger = logging.getLogger(__name__)


class OnlineRegimeFilter:
    """
    Real-time regime belief tracker.

    Not thread-safe: update() mutates the belief in place. Use one filter
    per symbol, or serialise access externally.

    Usage:
        online = OnlineRegimeFilter(RegimeHMM())
        for features in stream:
            estimate = online.update(features)
    """

    def __init__(
        self,
        hmm: RegimeHMM,
        smoothing_window: int = Config.SMOOTHING_WINDOW,
        smoothing_alpha: float = Config.SMOOTHING_ALPHA,
        model_name: str = "hmm"
    ):
        """
        Args:
            hmm: Model supplying A, pi and emission likelihoods
            smoothing_window: Number of raw posteriors kept (>= 1)
            smoothing_alpha: Weight of the newest posterior, in (0, 1]
            model_name: Name used on produced RegimeEstimates
        """
        if smoothing_window < 1:
            raise InvalidConfigurationError(
                f"smoothing_window must be >= 1, got {smoothing_window}"
            )
        if not 0.0 < smoothing_alpha <= 1.0:
            raise InvalidConfigurationError(
                f"smoothing_alpha must be in (0, 1], got {smoothing_alpha}"
            )

        self.hmm = hmm
        self.smoothing_window = int(smoothing_window)
        self.smoothing_alpha = float(smoothing_alpha)
        self.model_name = model_name

        self._belief = hmm.pi.copy()
        self._history: Deque[np.ndarray] = deque(maxlen=self.smoothing_window)
        self._n_updates = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def belief(self) -> np.ndarray:
        """Current (unsmoothed) Bayes-filter belief."""
        return self._belief.copy()

    @property
    def raw_posterior(self) -> Optional[np.ndarray]:
        """Posterior of the latest update, or None before the first one."""
        if not self._history:
            return None
        return self._history[-1].copy()

    @property
    def n_updates(self) -> int:
        return self._n_updates

    @property
    def smoothed(self) -> np.ndarray:
        """Exponentially weighted average of the posterior window."""
        if not self._history:
            return self._belief.copy()
        history = np.array(self._history)
        ages = np.arange(len(history))[::-1]
        weights = self.smoothing_alpha * (1.0 - self.smoothing_alpha) ** ages
        smoothed = weights @ history / weights.sum()
        return smoothed / smoothed.sum()

    def reset(self) -> None:
        """Return to the initial distribution and clear the smoothing window."""
        self._belief[:] = self.hmm.pi
        self._history.clear()
        self._n_updates = 0

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def update(self, observation: Any) -> RegimeEstimate:
        """
        Advance the filter by one observation.

        Args:
            observation: FeatureVector or length-F array

        Returns:
            RegimeEstimate built from the smoothed distribution; its
            confidence is the smoothed probability of the dominant regime

        Raises:
            InvalidInputError: On non-finite or mis-sized observations
        """
        likelihood = self.hmm.emission_likelihoods(observation)

        predicted = self.hmm.A.T @ self._belief
        posterior = predicted * likelihood
        total = posterior.sum()

        if total > 0:
            self._belief[:] = posterior / total
        else:
            logger.warning(
                "Observation is impossible under the predicted belief; "
                "keeping the prediction"
            )
            self._belief[:] = predicted / predicted.sum()

        self._history.append(self._belief.copy())
        self._n_updates += 1

        smoothed = self.smoothed
        dominant = int(np.argmax(smoothed))
        return RegimeEstimate(self.model_name, smoothed, float(smoothed[dominant]))

    def filter_sequence(self, observations: Any) -> pd.DataFrame:
        """
        Run update() over a sequence and collect the outputs.

        Returns:
            DataFrame with raw and smoothed probability columns per regime,
            the dominant regime label and confidence, one row per step
        """
        X = self.hmm._validate_observations(observations)
        rows = []
        for x in X:
            estimate = self.update(x)
            row = {f'raw_{r.label}': float(self._belief[r]) for r in REGIMES}
            row.update({f'p_{r.label}': float(estimate.regime_probs[r]) for r in REGIMES})
            row['dominant_regime'] = estimate.dominant_regime.label
            row['confidence'] = estimate.confidence
            rows.append(row)
        return pd.DataFrame(rows)


__all__ = [
    'OnlineRegimeFilter',
]
