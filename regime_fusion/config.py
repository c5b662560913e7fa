"""
Configuration Module for the Regime Classification Engine

This module centralizes every default, tolerance and option recognised by
the engine so that:
1. There is a single source of truth for all constants
2. Components can be tuned without touching inference code
3. Assumptions (persistence priors, calibration policy) stay visible

Two layers are provided:
    Config          Class-level constants used as constructor defaults
    EngineSettings  Validated, per-instance option set (JSON loadable)
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from regime_fusion.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

class Config:
    """
    Centralized default parameters.

    Values mirror the recognised configuration surface; components read
    them as keyword defaults so a bare constructor is always usable.
    """

    # -------------------------------------------------------------------------
    # Model Dimensions
    # -------------------------------------------------------------------------
    N_REGIMES: int = 4                  # Trending, MeanReverting, HighVol, Transitional
    N_FEATURES: int = 3                 # trend_slope, momentum, volatility

    # -------------------------------------------------------------------------
    # Online Filter
    # -------------------------------------------------------------------------
    SMOOTHING_WINDOW: int = 10          # Raw posteriors kept for smoothing
    SMOOTHING_ALPHA: float = 0.3        # Weight of the newest posterior

    # -------------------------------------------------------------------------
    # Hidden Markov Model
    # -------------------------------------------------------------------------
    HMM_SELF_TRANSITION: float = 0.90   # Default diagonal of A
    STOCHASTIC_TOL: float = 1e-6        # Row-sum tolerance for A and pi

    # -------------------------------------------------------------------------
    # Bayesian Transition Estimation
    # -------------------------------------------------------------------------
    PRIOR_STRENGTH: float = 10.0        # Pseudo-counts per prior row
    PRIOR_PERSISTENCE: float = 0.90     # Share of prior mass on the diagonal

    # -------------------------------------------------------------------------
    # Fuzzy Inference
    # -------------------------------------------------------------------------
    ACTIVATION_EPSILON: float = 1e-10   # Below this no rule is considered fired

    # -------------------------------------------------------------------------
    # Confidence Calibration
    # -------------------------------------------------------------------------
    N_CALIBRATION_BINS: int = 10        # Confidence deciles
    MIN_CALIBRATION_SAMPLES: int = 10   # Bin count before calibration applies
    CALIBRATION_BLEND: float = 0.5      # Weight on empirical accuracy
    CALIBRATION_DECAY: float = 1.0      # 1.0 = bins never forget

    # -------------------------------------------------------------------------
    # Ensemble
    # -------------------------------------------------------------------------
    MODEL_NAMES = ("fuzzy", "hmm")

    # -------------------------------------------------------------------------
    # Feature Derivation
    # -------------------------------------------------------------------------
    FEATURE_WINDOW: int = 20            # Bars per rolling feature window


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass
class EngineSettings:
    """
    Recognised options for a full classification pipeline.

    Attributes:
        n_regimes: Number of hidden regimes (fixed at 4 by the Regime enum)
        n_features: Observation width fed to the HMM
        smoothing_window: Posteriors kept by the online filter
        smoothing_alpha: Exponential smoothing weight in (0, 1]
        prior_strength: Dirichlet pseudo-counts per transition row
        n_calibration_bins: Number of confidence bins
        min_calibration_samples: Samples a bin needs before it is trusted
        calibration_blend: Weight on empirical accuracy in [0, 1]
        calibration_decay: Per-update forgetting factor in (0, 1]
        model_weights: Static ensemble weight per model name
    """

    n_regimes: int = Config.N_REGIMES
    n_features: int = Config.N_FEATURES
    smoothing_window: int = Config.SMOOTHING_WINDOW
    smoothing_alpha: float = Config.SMOOTHING_ALPHA
    prior_strength: float = Config.PRIOR_STRENGTH
    n_calibration_bins: int = Config.N_CALIBRATION_BINS
    min_calibration_samples: int = Config.MIN_CALIBRATION_SAMPLES
    calibration_blend: float = Config.CALIBRATION_BLEND
    calibration_decay: float = Config.CALIBRATION_DECAY
    model_weights: Optional[Dict[str, float]] = field(default=None)

    def validate(self) -> 'EngineSettings':
        """
        Check option ranges.

        Returns:
            self, for chaining

        Raises:
            InvalidConfigurationError: If any option is out of range
        """
        if self.n_regimes != Config.N_REGIMES:
            raise InvalidConfigurationError(
                f"n_regimes must be {Config.N_REGIMES}, got {self.n_regimes}"
            )
        if self.n_features < 1:
            raise InvalidConfigurationError(
                f"n_features must be positive, got {self.n_features}"
            )
        if self.smoothing_window < 1:
            raise InvalidConfigurationError(
                f"smoothing_window must be >= 1, got {self.smoothing_window}"
            )
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise InvalidConfigurationError(
                f"smoothing_alpha must be in (0, 1], got {self.smoothing_alpha}"
            )
        if not np.isfinite(self.prior_strength) or self.prior_strength <= 0:
            raise InvalidConfigurationError(
                f"prior_strength must be positive, got {self.prior_strength}"
            )
        if self.n_calibration_bins < 1:
            raise InvalidConfigurationError(
                f"n_calibration_bins must be >= 1, got {self.n_calibration_bins}"
            )
        if self.min_calibration_samples < 0:
            raise InvalidConfigurationError(
                f"min_calibration_samples must be >= 0, got {self.min_calibration_samples}"
            )
        if not 0.0 <= self.calibration_blend <= 1.0:
            raise InvalidConfigurationError(
                f"calibration_blend must be in [0, 1], got {self.calibration_blend}"
            )
        if not 0.0 < self.calibration_decay <= 1.0:
            raise InvalidConfigurationError(
                f"calibration_decay must be in (0, 1], got {self.calibration_decay}"
            )
        if self.model_weights is not None:
            for name, weight in self.model_weights.items():
                if not np.isfinite(weight) or weight < 0:
                    raise InvalidConfigurationError(
                        f"model weight for '{name}' must be finite and >= 0, got {weight}"
                    )
        return self

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'EngineSettings':
        """
        Build validated settings from a plain mapping.

        Raises:
            InvalidConfigurationError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown settings: {', '.join(sorted(unknown))}. "
                f"Available: {', '.join(sorted(known))}"
            )
        return cls(**raw).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_settings(path: Union[str, Path]) -> EngineSettings:
    """
    Load and validate engine settings from a JSON file.

    Args:
        path: Path to JSON settings file

    Returns:
        Validated EngineSettings

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the JSON is malformed
        InvalidConfigurationError: If the settings are invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r") as f:
        raw = json.load(f)

    if not isinstance(raw, dict):
        raise InvalidConfigurationError(
            f"Settings file must contain a JSON object, got {type(raw).__name__}"
        )

    settings = EngineSettings.from_dict(raw)
    logger.debug(f"Loaded settings from {path}: {settings}")
    return settings


__all__ = [
    'Config',
    'EngineSettings',
    'load_settings',
]
