"""
Regime Ensemble
===============

Confidence-weighted combination of per-model regime estimates:

    combined(r) = sum_m p_m(r) w_m c_m / sum_m w_m c_m

A model reporting near-zero confidence contributes almost nothing whatever
its static weight. If every model reports zero confidence the combination
falls back to the plain average of the model distributions.

Agreement is the share of registered models whose own dominant regime
equals the most common dominant regime. Models that abstain or report zero
confidence cast no vote but still count in the denominator, and are
reported as 'unknown'. Ensemble confidence = combined(dominant) x
agreement, so a confident but split ensemble is penalised.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

import numpy as np

from regime_fusion.config import Config
from regime_fusion.core import N_REGIMES, EnsembleResult, Regime, RegimeEstimate
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)

EstimateInputs = Union[Sequence[RegimeEstimate], Mapping[str, RegimeEstimate]]


def _vote(estimate: RegimeEstimate) -> Regime:
    """A model's vote; UNKNOWN when it abstained or has no confidence."""
    if estimate.abstained or estimate.confidence <= 0.0:
        return Regime.UNKNOWN
    return estimate.dominant_regime


class RegimeEnsemble:
    """
    Combine one RegimeEstimate per registered model.

    Usage:
        ensemble = RegimeEnsemble({'fuzzy': 1.0, 'hmm': 1.0})
        result = ensemble.estimate_regime([fuzzy_estimate, hmm_estimate])
    """

    def __init__(
        self,
        model_weights: Optional[Mapping[str, float]] = None,
        model_names: Iterable[str] = Config.MODEL_NAMES
    ):
        """
        Args:
            model_weights: Static weight per model name; names are taken
                from here when given
            model_names: Registered models when no weights are given
                (uniform weights)

        Raises:
            InvalidConfigurationError: On empty registries, negative or
                non-finite weights, or weights summing to zero
        """
        if model_weights is None:
            model_weights = {name: 1.0 for name in model_names}
        if not model_weights:
            raise InvalidConfigurationError("At least one model must be registered")

        weights: Dict[str, float] = {}
        for name, weight in model_weights.items():
            weight = float(weight)
            if not np.isfinite(weight) or weight < 0:
                raise InvalidConfigurationError(
                    f"Weight for model '{name}' must be finite and >= 0, got {weight}"
                )
            weights[name] = weight
        if sum(weights.values()) <= 0:
            raise InvalidConfigurationError("Model weights must not all be zero")

        self.model_weights = weights

    @property
    def model_names(self) -> list:
        return list(self.model_weights)

    def _collect(self, inputs: EstimateInputs) -> Dict[str, RegimeEstimate]:
        if isinstance(inputs, Mapping):
            by_name = {}
            for key, estimate in inputs.items():
                if key != estimate.model_name:
                    raise InvalidInputError(
                        f"Estimate keyed '{key}' was produced by '{estimate.model_name}'"
                    )
                by_name[key] = estimate
        else:
            by_name = {}
            for estimate in inputs:
                if estimate.model_name in by_name:
                    raise InvalidInputError(
                        f"Duplicate estimate for model '{estimate.model_name}'"
                    )
                by_name[estimate.model_name] = estimate

        missing = [name for name in self.model_weights if name not in by_name]
        unknown = [name for name in by_name if name not in self.model_weights]
        if missing or unknown:
            raise InvalidInputError(
                f"Expected one estimate per model {self.model_names}; "
                f"missing={missing}, unknown={unknown}"
            )
        return {name: by_name[name] for name in self.model_weights}

    def estimate_regime(self, inputs: EstimateInputs) -> EnsembleResult:
        """
        Combine model estimates into one classification.

        Args:
            inputs: One RegimeEstimate per registered model, as a sequence
                or a {model_name: estimate} mapping

        Returns:
            EnsembleResult; its confidence is combined_prob(dominant) x
            model_agreement and raw_confidence holds the same value

        Raises:
            InvalidInputError: On missing, duplicate or unknown models
        """
        estimates = self._collect(inputs)
        probs = np.array([e.regime_probs for e in estimates.values()])
        effective = np.array([
            self.model_weights[name] * e.confidence for name, e in estimates.items()
        ])

        total = effective.sum()
        if total > 0:
            combined = effective @ probs / total
        else:
            logger.warning("All models reported zero confidence; using equal-weight average")
            combined = probs.mean(axis=0)
        combined = combined / combined.sum()

        dominant = Regime(int(np.argmax(combined)))

        model_regimes = {name: _vote(e) for name, e in estimates.items()}
        votes = [int(r) for r in model_regimes.values() if r is not Regime.UNKNOWN]
        if votes:
            counts = np.bincount(votes, minlength=N_REGIMES)
            agreement = float(counts.max() / len(estimates))
        else:
            agreement = 0.0

        confidence = float(combined[dominant] * agreement)

        logger.debug(
            f"Ensemble: dominant={dominant.label}, p={combined[dominant]:.3f}, "
            f"agreement={agreement:.2f}, confidence={confidence:.3f}"
        )

        return EnsembleResult(
            regime_probs=combined,
            dominant_regime=dominant,
            confidence=confidence,
            model_agreement=agreement,
            raw_confidence=confidence,
            model_regimes=model_regimes,
        )


__all__ = [
    'RegimeEnsemble',
]
