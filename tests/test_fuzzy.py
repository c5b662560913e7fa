"""Tests for the fuzzy-logic regime assessor."""

import numpy as np
import pytest

from regime_fusion.core import FeatureVector, Regime
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError
from regime_fusion.fuzzy import DEFAULT_FUZZY_SETS, FuzzyAssessor, FuzzyRule, FuzzySet


def test_triangular_membership():
    """Test peak, feet and linear ramps of a triangular set."""
    fs = FuzzySet("up", 0.0, 0.4, 0.8)
    assert fs.membership(0.4) == 1.0
    assert fs.membership(0.0) == 0.0
    assert fs.membership(0.8) == 0.0
    assert fs.membership(-1.0) == 0.0
    assert fs.membership(0.2) == pytest.approx(0.5)
    assert fs.membership(0.6) == pytest.approx(0.5)


def test_membership_stays_in_unit_interval():
    """Test that every default set maps any input into [0, 1]."""
    for sets in DEFAULT_FUZZY_SETS.values():
        for fs in sets:
            for x in np.linspace(-2.0, 2.0, 81):
                assert 0.0 <= fs.membership(x) <= 1.0


def test_invalid_fuzzy_set_raises():
    """Test that out-of-order bounds are rejected."""
    with pytest.raises(InvalidConfigurationError, match="left <= center <= right"):
        FuzzySet("bad", 0.5, 0.0, 1.0)


def test_rule_weight_bounds():
    """Test that rule weights outside (0, 1] are rejected."""
    with pytest.raises(InvalidConfigurationError, match="weight"):
        FuzzyRule(("up", "positive", "low"), Regime.TRENDING, 1.5)
    with pytest.raises(InvalidConfigurationError):
        FuzzyRule(("up", "positive", "low"), Regime.UNKNOWN, 1.0)


def test_rule_with_unknown_label_rejected():
    """Test that the assessor validates rule labels against its sets."""
    rules = [FuzzyRule(("sideways", "positive", "low"), Regime.TRENDING, 1.0)]
    with pytest.raises(InvalidConfigurationError, match="sideways"):
        FuzzyAssessor(rules=rules)


def test_strong_uptrend_is_trending():
    """Test that a strong, quiet uptrend activates trending above every other regime."""
    assessor = FuzzyAssessor()
    memberships = assessor.assess(FeatureVector(0.9, 0.8, 0.3))
    activations = assessor.infer(memberships)

    assert activations[Regime.TRENDING] == pytest.approx(0.3)
    assert activations[Regime.TRENDING] >= activations.max()

    regime, confidence = assessor.defuzzify(activations)
    assert regime is Regime.TRENDING
    assert 0.0 < confidence <= 1.0


def test_quiet_flat_market_is_mean_reverting():
    """Test that zero slope and momentum at low volatility is mean reverting."""
    assessor = FuzzyAssessor()
    estimate = assessor.estimate(FeatureVector(0.0, 0.0, 0.0))
    assert estimate.dominant_regime is Regime.MEAN_REVERTING
    assert estimate.confidence == pytest.approx(1.0)


def test_no_rule_fires_returns_unknown():
    """Test the degenerate case where no rule activates."""
    assessor = FuzzyAssessor()
    # Volatility beyond every set's support
    fv = FeatureVector(0.0, 0.0, 2.0)
    activations = assessor.infer(assessor.assess(fv))
    assert activations.sum() == 0.0
    assert assessor.defuzzify(activations) == (Regime.UNKNOWN, 0.0)

    estimate = assessor.estimate(fv)
    assert estimate.confidence == 0.0
    assert estimate.abstained
    assert estimate.dominant_regime is Regime.UNKNOWN
    np.testing.assert_allclose(estimate.regime_probs, np.full(4, 0.25))


def test_estimate_is_normalised_activation():
    """Test that the estimate distribution is the normalised activation vector."""
    assessor = FuzzyAssessor()
    fv = FeatureVector(0.2, -0.1, 0.5)
    activations = assessor.infer(assessor.assess(fv))
    estimate = assessor.estimate(fv)
    np.testing.assert_allclose(estimate.regime_probs, activations / activations.sum())
    assert estimate.model_name == "fuzzy"


def test_infer_missing_membership_raises():
    """Test that incomplete membership input is reported."""
    assessor = FuzzyAssessor()
    with pytest.raises(InvalidInputError, match="Missing membership"):
        assessor.infer({"trend": {}, "momentum": {}, "volatility": {}})
