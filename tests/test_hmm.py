"""Tests for the Gaussian regime HMM."""

import numpy as np
import pytest

from regime_fusion.core import FeatureVector, Regime
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError
from regime_fusion.hmm import DEFAULT_EMISSION_MEANS, RegimeHMM, persistent_transition_matrix


@pytest.fixture
def hmm():
    return RegimeHMM()


@pytest.fixture
def observations():
    rng = np.random.default_rng(7)
    return rng.normal(loc=[0.1, 0.0, 0.4], scale=[0.4, 0.4, 0.2], size=(60, 3))


def test_forward_rows_are_distributions(hmm, observations):
    """Test that every filtered row sums to 1."""
    alpha = hmm.forward_algorithm(observations)
    assert alpha.shape == (60, 4)
    np.testing.assert_allclose(alpha.sum(axis=1), 1.0)
    assert np.all(alpha >= 0)


def test_backward_last_row_is_ones(hmm, observations):
    """Test the backward recursion's terminal condition."""
    beta = hmm.backward_algorithm(observations)
    np.testing.assert_allclose(beta[-1], 1.0)
    assert np.all(np.isfinite(beta))


def test_posteriors_sum_to_one(hmm, observations):
    """Test that smoothed posteriors are distributions."""
    inference = hmm.infer_regimes(observations)
    np.testing.assert_allclose(inference.posteriors.sum(axis=1), 1.0)
    assert inference.path.shape == (60,)
    assert np.isfinite(inference.log_likelihood)


def test_long_sequence_does_not_underflow(hmm):
    """Test numerical stability over thousands of steps."""
    rng = np.random.default_rng(0)
    X = rng.normal(size=(5000, 3))
    alpha = hmm.forward_algorithm(X)
    assert np.all(np.isfinite(alpha))
    np.testing.assert_allclose(alpha.sum(axis=1), 1.0)
    assert np.isfinite(hmm.log_likelihood(X))


def test_single_observation_log_likelihood(hmm):
    """Test log-likelihood of one observation against the emission densities."""
    obs = np.array([0.3, 0.2, 0.4])
    expected = np.log(sum(hmm.pi[k] * hmm.emission_probability(obs, k) for k in range(4)))
    assert hmm.log_likelihood(obs[None, :]) == pytest.approx(expected)


def test_constant_sequence_decodes_to_matching_state():
    """Test Viterbi on observations pinned to state 1's emission mean."""
    hmm = RegimeHMM(transition_matrix=persistent_transition_matrix(4, 0.9))
    X = np.tile(DEFAULT_EMISSION_MEANS[1], (50, 1))
    path = hmm._viterbi(X)
    assert path.shape == (50,)
    assert np.all(path == 1)
    assert hmm.infer_regimes(X).regimes[0] is Regime.MEAN_REVERTING


def test_viterbi_ties_resolve_to_lowest_index():
    """Test that indistinguishable states decode to state 0."""
    hmm = RegimeHMM(
        transition_matrix=np.full((4, 4), 0.25),
        emission_means=np.zeros((4, 3)),
        emission_stds=np.ones((4, 3)),
    )
    path = hmm._viterbi(np.zeros((5, 3)))
    np.testing.assert_array_equal(path, np.zeros(5, dtype=int))


def test_accepts_feature_vectors(hmm):
    """Test that a list of FeatureVector is accepted as a sequence."""
    seq = [FeatureVector(0.5, 0.4, 0.3), FeatureVector(0.6, 0.5, 0.35)]
    alpha = hmm.forward_algorithm(seq)
    assert alpha.shape == (2, 4)


def test_empty_sequence_raises(hmm):
    """Test that empty input is rejected rather than returning an empty array."""
    with pytest.raises(InvalidInputError, match="empty"):
        hmm.forward_algorithm(np.empty((0, 3)))
    with pytest.raises(InvalidInputError):
        hmm.forward_algorithm([])


def test_non_finite_observation_raises(hmm):
    """Test that NaN observations are rejected."""
    X = np.zeros((3, 3))
    X[1, 2] = np.nan
    with pytest.raises(InvalidInputError, match="NaN"):
        hmm.infer_regimes(X)


def test_wrong_feature_count_raises(hmm):
    """Test that observations must match the emission width."""
    with pytest.raises(InvalidInputError, match="3 features"):
        hmm.forward_algorithm(np.zeros((4, 2)))


def test_non_positive_std_raises():
    """Test that emission standard deviations must be positive."""
    stds = np.ones((4, 3))
    stds[2, 1] = 0.0
    with pytest.raises(InvalidConfigurationError, match="emission_stds"):
        RegimeHMM(emission_stds=stds)


def test_non_stochastic_transition_raises():
    """Test that transition rows must sum to 1."""
    A = np.full((4, 4), 0.3)
    with pytest.raises(InvalidConfigurationError, match="rows must sum to 1"):
        RegimeHMM(transition_matrix=A)


def test_set_transition_matrix_validates(hmm):
    """Test that replacing A re-validates it."""
    with pytest.raises(InvalidConfigurationError):
        hmm.set_transition_matrix(np.eye(3))
    hmm.set_transition_matrix(np.full((4, 4), 0.25))
    np.testing.assert_allclose(hmm.transition_matrix, 0.25)


def test_expected_durations_and_stationary(hmm):
    """Test diagnostics for the default persistent matrix."""
    np.testing.assert_allclose(hmm.expected_durations(), 10.0)
    np.testing.assert_allclose(hmm.stationary_distribution(), 0.25)


def test_emission_likelihoods_scaled_to_unit_max(hmm):
    """Test that single-step likelihoods are scaled so the best state is 1."""
    likelihood = hmm.emission_likelihoods(FeatureVector(0.6, 0.5, 0.35))
    assert likelihood.max() == pytest.approx(1.0)
    assert int(np.argmax(likelihood)) == Regime.TRENDING
