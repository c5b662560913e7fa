"""
Core data model shared by every component.

Regimes are a fixed IntEnum, and every regime -> value mapping is a dense
numpy array indexed by the enum value. Value objects (RegimeEstimate,
EnsembleResult) are produced per observation and never retained by the
component that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np

from regime_fusion.exceptions import InvalidInputError


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Regime(IntEnum):
    """
    Market regime classifications.

    The integer value doubles as the row/column index into every
    probability vector and transition matrix in the engine.
    """
    TRENDING = 0
    MEAN_REVERTING = 1
    HIGH_VOLATILITY = 2
    TRANSITIONAL = 3
    UNKNOWN = 4         # No fuzzy rule fired; never a matrix index

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> 'Regime':
        """Parse a snake-case label such as 'mean_reverting'."""
        try:
            return cls[label.strip().upper()]
        except KeyError:
            available = ", ".join(r.label for r in cls)
            raise InvalidInputError(
                f"Unknown regime '{label}'. Available: {available}"
            ) from None


REGIMES = (
    Regime.TRENDING,
    Regime.MEAN_REVERTING,
    Regime.HIGH_VOLATILITY,
    Regime.TRANSITIONAL,
)
N_REGIMES = len(REGIMES)

FEATURE_NAMES = ("trend_slope", "momentum", "volatility")

RegimeLike = Union[Regime, int, str]


def to_regime(value: RegimeLike) -> Regime:
    """Coerce a Regime, integer index or label to a classifiable Regime."""
    if isinstance(value, str):
        regime = Regime.from_label(value)
    else:
        try:
            regime = Regime(int(value))
        except (ValueError, TypeError):
            raise InvalidInputError(f"Invalid regime index: {value!r}") from None
    if regime is Regime.UNKNOWN:
        raise InvalidInputError("Regime.UNKNOWN is not a classifiable regime")
    return regime


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def validate_distribution(
    probs: Any,
    size: int = N_REGIMES,
    name: str = "regime_probs",
    tol: float = 1e-6
) -> np.ndarray:
    """
    Check that `probs` is a finite probability vector of the given length.

    Returns:
        Float array copy of the distribution

    Raises:
        InvalidInputError: If length, sign, finiteness or sum is wrong
    """
    arr = np.asarray(probs, dtype=float).reshape(-1)
    if arr.shape[0] != size:
        raise InvalidInputError(f"{name} must have length {size}, got {arr.shape[0]}")
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError(f"{name} contains NaN or Inf")
    if np.any(arr < 0):
        raise InvalidInputError(f"{name} contains negative probabilities")
    total = arr.sum()
    if abs(total - 1.0) > tol:
        raise InvalidInputError(f"{name} must sum to 1, got {total:.8f}")
    return arr.copy()


def validate_confidence(value: float, name: str = "confidence") -> float:
    """Check a confidence is a finite number in [0, 1]."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number, got {value!r}") from None
    if not np.isfinite(value) or not 0.0 <= value <= 1.0:
        raise InvalidInputError(f"{name} must be in [0, 1], got {value}")
    return value


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class FeatureVector:
    """
    Normalised market features for one observation.

    Attributes:
        trend_slope: Normalised trend slope, typically in [-1, 1]
        momentum: Normalised momentum, typically in [-1, 1]
        volatility: Normalised volatility, typically in [0, 1]
    """
    trend_slope: float
    momentum: float
    volatility: float

    def __post_init__(self):
        for name in FEATURE_NAMES:
            value = getattr(self, name)
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise InvalidInputError(f"{name} must be a number, got {value!r}") from None
            if not np.isfinite(value):
                raise InvalidInputError(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

    def as_array(self) -> np.ndarray:
        return np.array([self.trend_slope, self.momentum, self.volatility], dtype=float)

    @classmethod
    def from_array(cls, values: Sequence[float]) -> 'FeatureVector':
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.shape[0] != len(FEATURE_NAMES):
            raise InvalidInputError(
                f"Feature vector must have {len(FEATURE_NAMES)} values, got {arr.shape[0]}"
            )
        return cls(*arr.tolist())


@dataclass(frozen=True, eq=False)
class RegimeEstimate:
    """
    One model's view of the current regime.

    Attributes:
        model_name: Name of the producing model (ensemble key)
        regime_probs: Probability per regime, indexed by Regime value
        confidence: Model's self-reported confidence in [0, 1]
        timestamp: When the estimate was produced
        abstained: The model could not classify (e.g. no fuzzy rule fired);
            regime_probs is then a placeholder and carries no vote
    """
    model_name: str
    regime_probs: np.ndarray
    confidence: float
    timestamp: datetime = field(default_factory=datetime.now)
    abstained: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'regime_probs', validate_distribution(self.regime_probs))
        object.__setattr__(self, 'confidence', validate_confidence(self.confidence))
        if self.abstained and self.confidence != 0.0:
            raise InvalidInputError("An abstaining estimate must report zero confidence")

    @property
    def dominant_regime(self) -> Regime:
        """
        Argmax of regime_probs, or Regime.UNKNOWN for an abstaining estimate.

        Ties resolve to the lowest regime index, so a uniform distribution
        from a non-abstaining model reports TRENDING.
        """
        if self.abstained:
            return Regime.UNKNOWN
        return Regime(int(np.argmax(self.regime_probs)))

    def probability(self, regime: RegimeLike) -> float:
        return float(self.regime_probs[to_regime(regime)])

    def as_dict(self) -> Dict[Regime, float]:
        return {r: float(self.regime_probs[r]) for r in REGIMES}

    @classmethod
    def from_mapping(
        cls,
        model_name: str,
        probs: Mapping[RegimeLike, float],
        confidence: float,
        timestamp: Optional[datetime] = None
    ) -> 'RegimeEstimate':
        """Build an estimate from a {regime: prob} mapping; missing regimes are 0."""
        arr = np.zeros(N_REGIMES)
        for key, value in probs.items():
            arr[to_regime(key)] = value
        if timestamp is None:
            return cls(model_name, arr, confidence)
        return cls(model_name, arr, confidence, timestamp)


@dataclass(eq=False)
class EnsembleResult:
    """
    Combined regime classification for one observation.

    Attributes:
        regime_probs: Confidence-weighted combined distribution
        dominant_regime: Argmax of the combined distribution
        confidence: combined_prob(dominant) x model_agreement
        model_agreement: Share of all models voting for the modal regime
        raw_confidence: Confidence before calibration
        calibrated_confidence: Confidence after calibration, if applied
        model_regimes: Each model's vote (UNKNOWN when it abstained or had zero
            confidence)
        timestamp: When the result was produced
    """
    regime_probs: np.ndarray
    dominant_regime: Regime
    confidence: float
    model_agreement: float
    raw_confidence: float = 0.0
    calibrated_confidence: Optional[float] = None
    model_regimes: Dict[str, Regime] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def probability(self, regime: RegimeLike) -> float:
        return float(self.regime_probs[to_regime(regime)])

    def as_dict(self) -> Dict[str, Any]:
        """Flatten to a JSON-friendly record."""
        record: Dict[str, Any] = {
            'timestamp': self.timestamp.isoformat(),
            'dominant_regime': self.dominant_regime.label,
            'confidence': float(self.confidence),
            'raw_confidence': float(self.raw_confidence),
            'calibrated_confidence': (
                None if self.calibrated_confidence is None
                else float(self.calibrated_confidence)
            ),
            'model_agreement': float(self.model_agreement),
        }
        for regime in REGIMES:
            record[f'p_{regime.label}'] = float(self.regime_probs[regime])
        for name, regime in self.model_regimes.items():
            record[f'{name}_regime'] = regime.label
        return record


@dataclass
class CalibrationBin:
    """Running hit statistics for one confidence bin."""
    count: float = 0.0
    correct_count: float = 0.0

    @property
    def accuracy(self) -> float:
        if self.count <= 0:
            return 0.0
        return self.correct_count / self.count


__all__ = [
    'Regime',
    'REGIMES',
    'N_REGIMES',
    'FEATURE_NAMES',
    'RegimeLike',
    'to_regime',
    'validate_distribution',
    'validate_confidence',
    'FeatureVector',
    'RegimeEstimate',
    'EnsembleResult',
    'CalibrationBin',
]
