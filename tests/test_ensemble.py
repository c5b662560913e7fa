"""Tests for the confidence-weighted regime ensemble."""

import numpy as np
import pytest

from regime_fusion.core import Regime, RegimeEstimate
from regime_fusion.ensemble import RegimeEnsemble
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError


def _estimate(name, probs, confidence):
    return RegimeEstimate.from_mapping(name, probs, confidence)


def test_confident_model_dominates():
    """Test that a confident trending model outweighs an unsure dissenter."""
    ensemble = RegimeEnsemble()
    fuzzy = _estimate("fuzzy", {Regime.TRENDING: 0.9, Regime.MEAN_REVERTING: 0.1}, 0.9)
    hmm = _estimate("hmm", {Regime.MEAN_REVERTING: 0.9, Regime.TRENDING: 0.1}, 0.1)

    result = ensemble.estimate_regime([fuzzy, hmm])

    assert result.dominant_regime is Regime.TRENDING
    assert result.probability(Regime.TRENDING) > 0.8
    assert result.probability(Regime.TRENDING) == pytest.approx(0.82)
    assert result.model_agreement == pytest.approx(0.5)
    assert result.confidence == pytest.approx(0.82 * 0.5)
    assert result.raw_confidence == result.confidence
    assert result.model_regimes == {"fuzzy": Regime.TRENDING, "hmm": Regime.MEAN_REVERTING}


def test_full_agreement():
    """Test that matching dominant regimes give agreement 1."""
    ensemble = RegimeEnsemble()
    result = ensemble.estimate_regime({
        "fuzzy": _estimate("fuzzy", {Regime.HIGH_VOLATILITY: 0.7, Regime.TRANSITIONAL: 0.3}, 0.7),
        "hmm": _estimate("hmm", {Regime.HIGH_VOLATILITY: 0.6, Regime.TRENDING: 0.4}, 0.6),
    })
    assert result.dominant_regime is Regime.HIGH_VOLATILITY
    assert result.model_agreement == 1.0
    assert result.confidence == pytest.approx(result.probability(Regime.HIGH_VOLATILITY))


def test_all_disagree_gives_one_over_m():
    """Test agreement when every model picks a different regime."""
    ensemble = RegimeEnsemble(model_names=("a", "b", "c"))
    result = ensemble.estimate_regime([
        _estimate("a", {Regime.TRENDING: 1.0}, 0.5),
        _estimate("b", {Regime.MEAN_REVERTING: 1.0}, 0.5),
        _estimate("c", {Regime.TRANSITIONAL: 1.0}, 0.5),
    ])
    assert result.model_agreement == pytest.approx(1.0 / 3.0)
    assert result.regime_probs.sum() == pytest.approx(1.0)


def test_zero_confidence_falls_back_to_average():
    """Test the equal-weight fallback when no model is confident."""
    ensemble = RegimeEnsemble()
    result = ensemble.estimate_regime([
        _estimate("fuzzy", {Regime.TRENDING: 1.0}, 0.0),
        _estimate("hmm", {Regime.TRENDING: 0.5, Regime.HIGH_VOLATILITY: 0.5}, 0.0),
    ])
    np.testing.assert_allclose(result.regime_probs, [0.75, 0.0, 0.25, 0.0])
    assert result.dominant_regime is Regime.TRENDING
    assert result.model_agreement == 0.0
    assert result.confidence == 0.0
    assert result.model_regimes == {"fuzzy": Regime.UNKNOWN, "hmm": Regime.UNKNOWN}


def test_abstaining_model_casts_no_vote():
    """Test that an abstaining model is reported unknown and does not agree."""
    ensemble = RegimeEnsemble()
    fuzzy = RegimeEstimate("fuzzy", np.full(4, 0.25), 0.0, abstained=True)
    hmm = _estimate("hmm", {Regime.TRENDING: 0.8, Regime.TRANSITIONAL: 0.2}, 0.8)

    result = ensemble.estimate_regime([fuzzy, hmm])

    assert result.dominant_regime is Regime.TRENDING
    assert result.model_agreement == pytest.approx(0.5)
    assert result.confidence == pytest.approx(0.8 * 0.5)
    assert result.model_regimes == {"fuzzy": Regime.UNKNOWN, "hmm": Regime.TRENDING}
    assert result.as_dict()["fuzzy_regime"] == "unknown"


def test_zero_confidence_model_casts_no_vote():
    """Test that a model with zero confidence does not count as agreeing."""
    ensemble = RegimeEnsemble()
    result = ensemble.estimate_regime([
        _estimate("fuzzy", {Regime.MEAN_REVERTING: 1.0}, 0.0),
        _estimate("hmm", {Regime.MEAN_REVERTING: 0.9, Regime.TRENDING: 0.1}, 0.9),
    ])
    assert result.dominant_regime is Regime.MEAN_REVERTING
    assert result.model_regimes["fuzzy"] is Regime.UNKNOWN
    assert result.model_agreement == pytest.approx(0.5)


def test_static_weights_scale_contribution():
    """Test that a zero static weight silences a model."""
    ensemble = RegimeEnsemble({"fuzzy": 1.0, "hmm": 0.0})
    result = ensemble.estimate_regime([
        _estimate("fuzzy", {Regime.TRANSITIONAL: 1.0}, 0.4),
        _estimate("hmm", {Regime.TRENDING: 1.0}, 1.0),
    ])
    np.testing.assert_allclose(result.regime_probs, [0.0, 0.0, 0.0, 1.0])


def test_missing_model_raises():
    """Test that every registered model must report."""
    ensemble = RegimeEnsemble()
    with pytest.raises(InvalidInputError, match="missing"):
        ensemble.estimate_regime([_estimate("fuzzy", {Regime.TRENDING: 1.0}, 1.0)])


def test_duplicate_and_mismatched_inputs_raise():
    """Test duplicate names and mismatched mapping keys."""
    ensemble = RegimeEnsemble()
    fuzzy = _estimate("fuzzy", {Regime.TRENDING: 1.0}, 1.0)
    with pytest.raises(InvalidInputError, match="Duplicate"):
        ensemble.estimate_regime([fuzzy, fuzzy])
    with pytest.raises(InvalidInputError, match="produced by"):
        ensemble.estimate_regime({"hmm": fuzzy, "fuzzy": fuzzy})


def test_invalid_weights_raise():
    """Test weight validation."""
    with pytest.raises(InvalidConfigurationError, match="all be zero"):
        RegimeEnsemble({"fuzzy": 0.0, "hmm": 0.0})
    with pytest.raises(InvalidConfigurationError, match=">= 0"):
        RegimeEnsemble({"fuzzy": -1.0, "hmm": 1.0})
    with pytest.raises(InvalidConfigurationError):
        RegimeEnsemble({})
