"""
Regime Classification Pipeline
==============================

Wires the components along the engine's data flow:

    features --+--> FuzzyAssessor -------+
               |                         +--> RegimeEnsemble --> ConfidenceCalibrator
               +--> OnlineRegimeFilter --+
                          ^
                          | transition matrix (slow cadence)
    Viterbi path --> BayesianTransitionEstimator

step() runs once per tick. refresh_transitions() runs on a slower cadence:
it decodes a batch of observations, folds the decoded transitions into the
Dirichlet posterior and installs the posterior mean into the HMM, which the
online filter reads on its next update.

Usage:
    pipeline = RegimeClassificationPipeline()
    result = pipeline.step(FeatureVector(0.4, 0.3, 0.2))
    print(format_regime_report(result))
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import numpy as np
import pandas as pd

from regime_fusion.bayesian import BayesianTransitionEstimator
from regime_fusion.calibration import ConfidenceCalibrator
from regime_fusion.config import EngineSettings
from regime_fusion.core import (
    REGIMES,
    EnsembleResult,
    FeatureVector,
    RegimeLike,
    to_regime,
)
from regime_fusion.ensemble import RegimeEnsemble
from regime_fusion.exceptions import InvalidConfigurationError
from regime_fusion.features import frame_to_features
from regime_fusion.fuzzy import FuzzyAssessor
from regime_fusion.hmm import RegimeHMM
from regime_fusion.online import OnlineRegimeFilter

logger = logging.getLogger(__name__)


class RegimeClassificationPipeline:
    """
    End-to-end regime classifier with calibrated confidence.

    Each pipeline owns its own HMM, filter, estimator and calibrator; use
    one instance per symbol.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        assessor: Optional[FuzzyAssessor] = None,
        hmm: Optional[RegimeHMM] = None
    ):
        """
        Args:
            settings: Engine options (defaults when omitted)
            assessor: Fuzzy assessor (default rule table when omitted)
            hmm: Regime HMM (default parameters when omitted)

        Raises:
            InvalidConfigurationError: If settings or components are invalid
        """
        self.settings = (settings or EngineSettings()).validate()
        s = self.settings

        self.assessor = assessor or FuzzyAssessor()
        self.hmm = hmm or RegimeHMM(n_regimes=s.n_regimes, n_features=s.n_features)
        self.filter = OnlineRegimeFilter(
            self.hmm,
            smoothing_window=s.smoothing_window,
            smoothing_alpha=s.smoothing_alpha,
        )
        model_names = (self.assessor.model_name, self.filter.model_name)
        if s.model_weights is not None and set(s.model_weights) != set(model_names):
            raise InvalidConfigurationError(
                f"model_weights must name exactly the models {list(model_names)}, "
                f"got {sorted(s.model_weights)}"
            )
        self.ensemble = RegimeEnsemble(s.model_weights, model_names=model_names)
        self.calibrator = ConfidenceCalibrator(
            n_bins=s.n_calibration_bins,
            min_samples=s.min_calibration_samples,
            blend=s.calibration_blend,
            decay=s.calibration_decay,
        )
        self.estimator = BayesianTransitionEstimator(
            n_regimes=s.n_regimes,
            prior_strength=s.prior_strength,
        )
        self._initial_transitions = self.hmm.transition_matrix

    def step(self, features: Any) -> EnsembleResult:
        """
        Classify one observation.

        Args:
            features: FeatureVector or (trend_slope, momentum, volatility)

        Returns:
            EnsembleResult whose confidence is the calibrated value;
            raw_confidence keeps the ensemble's own figure
        """
        if not isinstance(features, FeatureVector):
            features = FeatureVector.from_array(features)

        fuzzy_estimate = self.assessor.estimate(features)
        hmm_estimate = self.filter.update(features)

        result = self.ensemble.estimate_regime([fuzzy_estimate, hmm_estimate])
        calibrated = self.calibrator.calibrate(result.raw_confidence)
        result.calibrated_confidence = calibrated
        result.confidence = calibrated
        return result

    def record_outcome(self, result: EnsembleResult, realized_regime: RegimeLike) -> bool:
        """
        Feed a realised regime back into the calibrator.

        Returns:
            Whether the prediction was correct
        """
        was_correct = result.dominant_regime == to_regime(realized_regime)
        self.calibrator.update(result.raw_confidence, was_correct)
        return was_correct

    def refresh_transitions(self, observations: Any) -> np.ndarray:
        """
        Decode observations and refresh the HMM transition matrix.

        Args:
            observations: (T, F) observation sequence

        Returns:
            The Viterbi path that was folded into the posterior
        """
        start = time.time()
        path = self.hmm._viterbi(observations)
        self.estimator.update(path)
        self.estimator.apply_to(self.hmm)
        logger.info(
            f"Transition refresh over {len(path)} observations "
            f"took {int((time.time() - start) * 1000)}ms"
        )
        return path

    def run(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Step through a feature frame.

        Args:
            frame: DataFrame with trend_slope, momentum, volatility columns

        Returns:
            One flattened EnsembleResult record per row, on the frame's index
        """
        records = [self.step(fv).as_dict() for fv in frame_to_features(frame)]
        history = pd.DataFrame(records, index=frame.index)
        logger.info(f"Classified {len(history)} observations")
        return history

    def reset(self) -> None:
        """
        Return every component to its constructed state.

        The estimator goes back to its prior and the HMM to the transition
        matrix it had before any refresh.
        """
        self.estimator.reset()
        self.hmm.set_transition_matrix(self._initial_transitions)
        self.filter.reset()
        self.calibrator.reset()


def format_regime_report(
    result: EnsembleResult,
    estimator: Optional[BayesianTransitionEstimator] = None
) -> str:
    """
    Format an ensemble result as human-readable text.

    Args:
        result: Output of RegimeClassificationPipeline.step()
        estimator: Optional estimator whose posterior persistence is listed

    Returns:
        Formatted string
    """
    lines = [
        "=" * 70,
        "MARKET REGIME CLASSIFICATION",
        "=" * 70,
        f"Timestamp: {result.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Dominant Regime: {result.dominant_regime.label}",
        f"Confidence: {result.confidence:.1%}",
        f"Raw Confidence: {result.raw_confidence:.1%}",
        f"Model Agreement: {result.model_agreement:.0%}",
        "",
        "Regime Probabilities:",
    ]

    for regime in REGIMES:
        lines.append(f"  {regime.label}: {result.regime_probs[regime]:.1%}")

    if result.model_regimes:
        lines.extend(["", "Model Votes:"])
        for name, regime in result.model_regimes.items():
            lines.append(f"  {name}: {regime.label}")

    if estimator is not None:
        mean = estimator.get_posterior_mean()
        std = estimator.get_posterior_uncertainty()
        lines.extend([
            "",
            "-" * 70,
            "TRANSITION POSTERIOR",
            "-" * 70,
            f"Observed Transitions: {estimator.n_transitions:,}",
            "Persistence (mean ± std):",
        ])
        for regime in REGIMES:
            lines.append(
                f"  {regime.label}: {mean[regime, regime]:.3f} ± {std[regime, regime]:.3f}"
            )

    lines.append("=" * 70)
    return "\n".join(lines)


__all__ = [
    'RegimeClassificationPipeline',
    'format_regime_report',
]
