"""
Fuzzy-Logic Regime Assessor
===========================

Converts three normalised market features into graded memberships over
named categories, fires a weighted rule table, and defuzzifies the result
into a (regime, confidence) pair.

Memberships are computed independently per fuzzy set; they are not forced
to sum to one, so a slope of 0.55 can be partly 'up' and partly
'strong_up' at the same time.

Inference semantics:
    activation(rule)   = weight x min(mu_trend, mu_momentum, mu_volatility)
    activation(regime) = max over rules concluding that regime
    confidence         = activation[dominant] / sum(activations)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from regime_fusion.config import Config
from regime_fusion.core import (
    N_REGIMES,
    FeatureVector,
    Regime,
    RegimeEstimate,
)
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)

FUZZY_VARIABLES = ("trend", "momentum", "volatility")


# =============================================================================
# SECTION 1: FUZZY SETS AND RULES
# =============================================================================

@dataclass(frozen=True)
class FuzzySet:
    """
    Triangular membership function.

    Attributes:
        name: Category label (e.g. 'strong_up')
        left: Lower foot, membership 0 at and below it
        center: Peak, membership 1
        right: Upper foot, membership 0 at and above it
    """
    name: str
    left: float
    center: float
    right: float

    def __post_init__(self):
        if not all(np.isfinite([self.left, self.center, self.right])):
            raise InvalidConfigurationError(f"Fuzzy set '{self.name}' has non-finite bounds")
        if not self.left <= self.center <= self.right:
            raise InvalidConfigurationError(
                f"Fuzzy set '{self.name}' requires left <= center <= right, "
                f"got ({self.left}, {self.center}, {self.right})"
            )

    def membership(self, x: float) -> float:
        """Degree in [0, 1] to which x belongs to this set."""
        if x == self.center:
            return 1.0
        if x <= self.left or x >= self.right:
            return 0.0
        if x < self.center:
            return (x - self.left) / (self.center - self.left)
        return (self.right - x) / (self.right - self.center)


@dataclass(frozen=True)
class FuzzyRule:
    """
    Tagged rule record: IF trend AND momentum AND volatility THEN regime.

    Attributes:
        antecedent: (trend_label, momentum_label, volatility_label)
        consequent: Regime concluded when the rule fires
        weight: Rule strength in (0, 1]
    """
    antecedent: Tuple[str, str, str]
    consequent: Regime
    weight: float = 1.0

    def __post_init__(self):
        if len(self.antecedent) != len(FUZZY_VARIABLES):
            raise InvalidConfigurationError(
                f"Rule antecedent must name {len(FUZZY_VARIABLES)} labels, "
                f"got {self.antecedent}"
            )
        if self.consequent is Regime.UNKNOWN:
            raise InvalidConfigurationError("Rule consequent cannot be Regime.UNKNOWN")
        if not 0.0 < self.weight <= 1.0:
            raise InvalidConfigurationError(
                f"Rule weight must be in (0, 1], got {self.weight}"
            )


def _sets(*params: Tuple[str, float, float, float]) -> Tuple[FuzzySet, ...]:
    return tuple(FuzzySet(*p) for p in params)


DEFAULT_FUZZY_SETS: Dict[str, Tuple[FuzzySet, ...]] = {
    "trend": _sets(
        ("strong_down", -1.5, -1.0, -0.4),
        ("down", -0.8, -0.4, 0.0),
        ("flat", -0.3, 0.0, 0.3),
        ("up", 0.0, 0.4, 0.8),
        ("strong_up", 0.4, 1.0, 1.5),
    ),
    "momentum": _sets(
        ("strong_negative", -1.5, -1.0, -0.4),
        ("negative", -0.8, -0.4, 0.0),
        ("neutral", -0.3, 0.0, 0.3),
        ("positive", 0.0, 0.4, 0.8),
        ("strong_positive", 0.4, 1.0, 1.5),
    ),
    "volatility": _sets(
        ("low", -0.5, 0.0, 0.4),
        ("medium", 0.2, 0.5, 0.8),
        ("high", 0.6, 1.0, 1.5),
    ),
}

_T = Regime.TRENDING
_M = Regime.MEAN_REVERTING
_H = Regime.HIGH_VOLATILITY
_X = Regime.TRANSITIONAL

DEFAULT_RULES: Tuple[FuzzyRule, ...] = (
    # Trending: slope and momentum aligned, volatility contained
    FuzzyRule(("strong_up", "strong_positive", "low"), _T, 1.0),
    FuzzyRule(("strong_up", "strong_positive", "medium"), _T, 0.9),
    FuzzyRule(("up", "positive", "low"), _T, 0.8),
    FuzzyRule(("up", "positive", "medium"), _T, 0.7),
    FuzzyRule(("strong_up", "positive", "low"), _T, 0.8),
    FuzzyRule(("strong_down", "strong_negative", "low"), _T, 1.0),
    FuzzyRule(("strong_down", "strong_negative", "medium"), _T, 0.9),
    FuzzyRule(("down", "negative", "low"), _T, 0.8),
    FuzzyRule(("down", "negative", "medium"), _T, 0.7),
    FuzzyRule(("strong_down", "negative", "low"), _T, 0.8),

    # Mean reverting: no persistent direction, quiet tape
    FuzzyRule(("flat", "neutral", "low"), _M, 1.0),
    FuzzyRule(("flat", "neutral", "medium"), _M, 0.8),
    FuzzyRule(("flat", "positive", "low"), _M, 0.6),
    FuzzyRule(("flat", "negative", "low"), _M, 0.6),
    FuzzyRule(("up", "negative", "low"), _M, 0.7),
    FuzzyRule(("down", "positive", "low"), _M, 0.7),

    # High volatility: dominated by the volatility reading
    FuzzyRule(("flat", "neutral", "high"), _H, 1.0),
    FuzzyRule(("flat", "negative", "high"), _H, 0.9),
    FuzzyRule(("flat", "positive", "high"), _H, 0.8),
    FuzzyRule(("strong_down", "strong_negative", "high"), _H, 0.9),
    FuzzyRule(("down", "negative", "high"), _H, 0.8),
    FuzzyRule(("up", "positive", "high"), _H, 0.6),
    FuzzyRule(("strong_up", "strong_positive", "high"), _H, 0.7),
    FuzzyRule(("down", "strong_negative", "high"), _H, 0.9),

    # Transitional: slope and momentum diverge
    FuzzyRule(("up", "neutral", "medium"), _X, 0.8),
    FuzzyRule(("down", "neutral", "medium"), _X, 0.8),
    FuzzyRule(("flat", "positive", "medium"), _X, 0.7),
    FuzzyRule(("flat", "negative", "medium"), _X, 0.7),
    FuzzyRule(("strong_up", "neutral", "medium"), _X, 0.6),
    FuzzyRule(("strong_down", "neutral", "medium"), _X, 0.6),
    FuzzyRule(("strong_up", "negative", "low"), _X, 0.8),
    FuzzyRule(("strong_up", "negative", "medium"), _X, 0.9),
    FuzzyRule(("strong_down", "positive", "low"), _X, 0.8),
    FuzzyRule(("strong_down", "positive", "medium"), _X, 0.9),
    FuzzyRule(("up", "strong_negative", "medium"), _X, 0.7),
    FuzzyRule(("down", "strong_positive", "medium"), _X, 0.7),
)


# =============================================================================
# SECTION 2: ASSESSOR
# =============================================================================

class FuzzyAssessor:
    """
    Instantaneous fuzzy-logic regime assessor.

    Holds an immutable fuzzy-set configuration and rule table. Every call
    is a pure function of its inputs.

    Usage:
        assessor = FuzzyAssessor()
        memberships = assessor.assess(FeatureVector(0.9, 0.8, 0.3))
        regime, confidence = assessor.defuzzify(assessor.infer(memberships))
    """

    def __init__(
        self,
        fuzzy_sets: Optional[Mapping[str, Sequence[FuzzySet]]] = None,
        rules: Optional[Sequence[FuzzyRule]] = None,
        model_name: str = "fuzzy"
    ):
        """
        Args:
            fuzzy_sets: Mapping from variable ('trend', 'momentum',
                'volatility') to its fuzzy sets
            rules: Rule table; every antecedent label must name a set
            model_name: Name used on produced RegimeEstimates

        Raises:
            InvalidConfigurationError: On missing variables, duplicate set
                names or rules referencing unknown labels
        """
        fuzzy_sets = DEFAULT_FUZZY_SETS if fuzzy_sets is None else fuzzy_sets
        rules = DEFAULT_RULES if rules is None else rules

        missing = [v for v in FUZZY_VARIABLES if v not in fuzzy_sets]
        if missing:
            raise InvalidConfigurationError(
                f"Fuzzy sets missing for variables: {', '.join(missing)}"
            )

        self.fuzzy_sets: Dict[str, Tuple[FuzzySet, ...]] = {}
        for variable in FUZZY_VARIABLES:
            sets = tuple(fuzzy_sets[variable])
            names = [s.name for s in sets]
            if len(set(names)) != len(names):
                raise InvalidConfigurationError(
                    f"Duplicate fuzzy set names for '{variable}': {names}"
                )
            self.fuzzy_sets[variable] = sets

        for rule in rules:
            for variable, label in zip(FUZZY_VARIABLES, rule.antecedent):
                if label not in {s.name for s in self.fuzzy_sets[variable]}:
                    raise InvalidConfigurationError(
                        f"Rule {rule.antecedent} -> {rule.consequent.label} references "
                        f"unknown {variable} label '{label}'"
                    )

        self.rules: Tuple[FuzzyRule, ...] = tuple(rules)
        self.model_name = model_name

    def assess(self, feature_vector: FeatureVector) -> Dict[str, Dict[str, float]]:
        """
        Compute membership degrees for every fuzzy set.

        Args:
            feature_vector: Normalised features for one observation

        Returns:
            {'trend': {name: mu}, 'momentum': {...}, 'volatility': {...}}
        """
        values = dict(zip(FUZZY_VARIABLES, feature_vector.as_array()))
        return {
            variable: {s.name: s.membership(values[variable]) for s in self.fuzzy_sets[variable]}
            for variable in FUZZY_VARIABLES
        }

    def infer(self, fuzzy_memberships: Mapping[str, Mapping[str, float]]) -> np.ndarray:
        """
        Fire the rule table (min for AND, max for OR).

        Args:
            fuzzy_memberships: Output of assess()

        Returns:
            Activation per regime, indexed by Regime value

        Raises:
            InvalidInputError: If a membership needed by a rule is missing
        """
        activations = np.zeros(N_REGIMES)
        for rule in self.rules:
            try:
                degrees = [
                    fuzzy_memberships[variable][label]
                    for variable, label in zip(FUZZY_VARIABLES, rule.antecedent)
                ]
            except KeyError as e:
                raise InvalidInputError(f"Missing membership for {e}") from None
            strength = rule.weight * min(degrees)
            if strength > activations[rule.consequent]:
                activations[rule.consequent] = strength
        return activations

    def defuzzify(self, activations: Sequence[float]) -> Tuple[Regime, float]:
        """
        Pick the dominant regime and its share of total activation.

        Returns:
            (regime, confidence); (Regime.UNKNOWN, 0.0) when no rule fired
        """
        activations = np.asarray(activations, dtype=float)
        total = activations.sum()
        if total < Config.ACTIVATION_EPSILON:
            logger.debug("No fuzzy rule fired; returning UNKNOWN")
            return Regime.UNKNOWN, 0.0
        dominant = int(np.argmax(activations))
        return Regime(dominant), float(activations[dominant] / total)

    def estimate(self, feature_vector: FeatureVector) -> RegimeEstimate:
        """
        Full assess -> infer -> defuzzify pass packaged for the ensemble.

        The distribution is the normalised activation vector. When no rule
        fires the estimate abstains with zero confidence over a uniform
        placeholder, and its dominant_regime is Regime.UNKNOWN.
        """
        activations = self.infer(self.assess(feature_vector))
        regime, confidence = self.defuzzify(activations)
        if regime is Regime.UNKNOWN:
            probs = np.full(N_REGIMES, 1.0 / N_REGIMES)
            return RegimeEstimate(self.model_name, probs, 0.0, abstained=True)
        return RegimeEstimate(self.model_name, activations / activations.sum(), confidence)


__all__ = [
    'FUZZY_VARIABLES',
    'FuzzySet',
    'FuzzyRule',
    'DEFAULT_FUZZY_SETS',
    'DEFAULT_RULES',
    'FuzzyAssessor',
]
