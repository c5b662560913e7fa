"""
Gaussian Hidden Markov Model for Regime Inference
=================================================

A 4-state HMM over multivariate feature observations with diagonal
Gaussian emissions. Parameters are supplied (or refreshed from the Bayesian
transition estimator), not learned here.

Mathematical Framework:
-----------------------
Let X_t be the hidden regime at time t and Y_t the observed feature vector.

    Transition Model: P(X_t = j | X_{t-1} = i) = A[i, j]
    Emission Model:   P(Y_t | X_t = k) = prod_f N(y_f; mu[k, f], sd[k, f])
    Initial Model:    P(X_0 = k) = pi[k]

Forward and backward recursions rescale every row to sum to one, so
long sequences never underflow. Emission log-densities are shifted by
their per-step maximum before exponentiation; the shift cancels in every
normalised quantity and is added back for the log-likelihood.

References:
    Rabiner (1989), "A Tutorial on Hidden Markov Models"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import norm

from regime_fusion.config import Config
from regime_fusion.core import FeatureVector, Regime
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)


# Emission parameters per regime over (trend_slope, momentum, volatility)
DEFAULT_EMISSION_MEANS = np.array([
    [0.60, 0.50, 0.35],     # TRENDING: strong slope and momentum
    [0.00, 0.00, 0.20],     # MEAN_REVERTING: flat and quiet
    [-0.20, -0.10, 0.80],   # HIGH_VOLATILITY: volatility dominates
    [0.10, -0.20, 0.50],    # TRANSITIONAL: slope and momentum diverge
])

DEFAULT_EMISSION_STDS = np.array([
    [0.30, 0.30, 0.15],
    [0.20, 0.20, 0.10],
    [0.45, 0.45, 0.12],
    [0.30, 0.30, 0.15],
])


def persistent_transition_matrix(
    n_states: int,
    self_transition: float = Config.HMM_SELF_TRANSITION
) -> np.ndarray:
    """Row-stochastic matrix with `self_transition` on the diagonal."""
    if n_states == 1:
        return np.ones((1, 1))
    off = (1.0 - self_transition) / (n_states - 1)
    A = np.full((n_states, n_states), off)
    np.fill_diagonal(A, self_transition)
    return A


def check_stochastic_matrix(matrix: Any, n_states: int, name: str = "transition_matrix") -> np.ndarray:
    """
    Validate a row-stochastic matrix.

    Raises:
        InvalidConfigurationError: On wrong shape, negative or non-finite
            entries, or rows that do not sum to 1
    """
    A = np.array(matrix, dtype=float)
    if A.shape != (n_states, n_states):
        raise InvalidConfigurationError(
            f"{name} must have shape ({n_states}, {n_states}), got {A.shape}"
        )
    if not np.all(np.isfinite(A)) or np.any(A < 0):
        raise InvalidConfigurationError(f"{name} entries must be finite and non-negative")
    row_sums = A.sum(axis=1)
    if np.any(np.abs(row_sums - 1.0) > Config.STOCHASTIC_TOL):
        raise InvalidConfigurationError(
            f"{name} rows must sum to 1, got {np.round(row_sums, 8).tolist()}"
        )
    return A


@dataclass(eq=False)
class RegimeInference:
    """
    Batch inference output for one observation sequence.

    Attributes:
        posteriors: gamma[t, s] = P(X_t = s | Y_{0:T-1})
        path: Viterbi-decoded most likely state sequence
        log_likelihood: log P(Y_{0:T-1})
    """
    posteriors: np.ndarray
    path: np.ndarray
    log_likelihood: float

    @property
    def regimes(self) -> list:
        return [Regime(int(s)) for s in self.path]

    @property
    def current_regime(self) -> Regime:
        return Regime(int(np.argmax(self.posteriors[-1])))


class RegimeHMM:
    """
    Gaussian-emission HMM with fixed or externally supplied parameters.

    Batch inference (forward-backward, Viterbi) is read-only against the
    parameters. Only set_transition_matrix() mutates the model.

    Usage:
        hmm = RegimeHMM()
        inference = hmm.infer_regimes(observations)   # (T, 3) array
        print(inference.regimes[-1])
    """

    def __init__(
        self,
        transition_matrix: Optional[Any] = None,
        emission_means: Optional[Any] = None,
        emission_stds: Optional[Any] = None,
        initial_dist: Optional[Any] = None,
        n_regimes: int = Config.N_REGIMES,
        n_features: int = Config.N_FEATURES
    ):
        """
        Initialize the model.

        Args:
            transition_matrix: (N, N) row-stochastic matrix
            emission_means: (N, F) per-regime feature means
            emission_stds: (N, F) per-regime feature standard deviations
            initial_dist: (N,) initial regime distribution
            n_regimes: Number of hidden states N
            n_features: Observation width F

        Raises:
            InvalidConfigurationError: If any parameter is malformed
        """
        if n_regimes < 1 or n_features < 1:
            raise InvalidConfigurationError(
                f"n_regimes and n_features must be positive, got {n_regimes}, {n_features}"
            )
        self.n_states = n_regimes
        self.n_features = n_features

        if transition_matrix is None:
            transition_matrix = persistent_transition_matrix(n_regimes)
        if emission_means is None:
            if (n_regimes, n_features) != DEFAULT_EMISSION_MEANS.shape:
                raise InvalidConfigurationError(
                    "emission_means must be supplied for non-default dimensions"
                )
            emission_means = DEFAULT_EMISSION_MEANS
        if emission_stds is None:
            if (n_regimes, n_features) != DEFAULT_EMISSION_STDS.shape:
                raise InvalidConfigurationError(
                    "emission_stds must be supplied for non-default dimensions"
                )
            emission_stds = DEFAULT_EMISSION_STDS
        if initial_dist is None:
            initial_dist = np.full(n_regimes, 1.0 / n_regimes)

        self.A = check_stochastic_matrix(transition_matrix, n_regimes)

        self.means = np.array(emission_means, dtype=float)
        if self.means.shape != (n_regimes, n_features):
            raise InvalidConfigurationError(
                f"emission_means must have shape ({n_regimes}, {n_features}), "
                f"got {self.means.shape}"
            )
        if not np.all(np.isfinite(self.means)):
            raise InvalidConfigurationError("emission_means must be finite")

        self.stds = np.array(emission_stds, dtype=float)
        if self.stds.shape != (n_regimes, n_features):
            raise InvalidConfigurationError(
                f"emission_stds must have shape ({n_regimes}, {n_features}), "
                f"got {self.stds.shape}"
            )
        if not np.all(np.isfinite(self.stds)) or np.any(self.stds <= 0):
            raise InvalidConfigurationError("emission_stds must be finite and > 0")

        self.pi = np.array(initial_dist, dtype=float).reshape(-1)
        if self.pi.shape != (n_regimes,):
            raise InvalidConfigurationError(
                f"initial_dist must have length {n_regimes}, got {self.pi.shape[0]}"
            )
        if not np.all(np.isfinite(self.pi)) or np.any(self.pi < 0):
            raise InvalidConfigurationError("initial_dist entries must be finite and non-negative")
        if abs(self.pi.sum() - 1.0) > Config.STOCHASTIC_TOL:
            raise InvalidConfigurationError(
                f"initial_dist must sum to 1, got {self.pi.sum():.8f}"
            )

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    @property
    def transition_matrix(self) -> np.ndarray:
        return self.A.copy()

    def set_transition_matrix(self, matrix: Any) -> None:
        """Replace A (e.g. with a Bayesian posterior mean) after validation."""
        self.A = check_stochastic_matrix(matrix, self.n_states)
        logger.debug(f"Transition matrix updated, diagonal={np.round(np.diag(self.A), 4).tolist()}")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate_observation(self, obs: Any) -> np.ndarray:
        if isinstance(obs, FeatureVector):
            obs = obs.as_array()
        x = np.asarray(obs, dtype=float).reshape(-1)
        if x.shape[0] != self.n_features:
            raise InvalidInputError(
                f"Observation must have {self.n_features} features, got {x.shape[0]}"
            )
        if not np.all(np.isfinite(x)):
            raise InvalidInputError("Observation contains NaN or Inf")
        return x

    def _validate_observations(self, observations: Any) -> np.ndarray:
        if isinstance(observations, (list, tuple)) and observations and \
                isinstance(observations[0], FeatureVector):
            observations = [fv.as_array() for fv in observations]
        X = np.asarray(observations, dtype=float)
        if X.size == 0:
            raise InvalidInputError("Observation sequence is empty")
        if X.ndim != 2:
            raise InvalidInputError(
                f"Observation sequence must be 2-D (T, {self.n_features}), got ndim={X.ndim}"
            )
        if X.shape[1] != self.n_features:
            raise InvalidInputError(
                f"Observations must have {self.n_features} features, got {X.shape[1]}"
            )
        if not np.all(np.isfinite(X)):
            raise InvalidInputError("Observation sequence contains NaN or Inf")
        return X

    # -------------------------------------------------------------------------
    # Emissions
    # -------------------------------------------------------------------------

    def _log_emissions(self, X: np.ndarray) -> np.ndarray:
        """log P(Y_t | X_t = k) for all t, k as a (T, N) array."""
        # (T, 1, F) against (N, F) broadcasts to (T, N, F)
        log_pdf = norm.logpdf(X[:, None, :], loc=self.means[None, :, :], scale=self.stds[None, :, :])
        return log_pdf.sum(axis=2)

    def _shifted_emissions(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Emission likelihoods scaled so each row's maximum is 1.

        Returns:
            B: (T, N) scaled likelihoods
            shift: (T,) log of the removed per-row factor
        """
        log_B = self._log_emissions(X)
        shift = log_B.max(axis=1)
        return np.exp(log_B - shift[:, None]), shift

    def emission_probability(self, obs: Any, state: int) -> float:
        """
        Density of one observation under one state's Gaussian emissions.

        Args:
            obs: Feature vector of length F
            state: State index in [0, N)

        Returns:
            Product of per-feature Gaussian densities
        """
        x = self._validate_observation(obs)
        if not 0 <= int(state) < self.n_states:
            raise InvalidInputError(f"state must be in [0, {self.n_states}), got {state}")
        s = int(state)
        log_p = norm.logpdf(x, loc=self.means[s], scale=self.stds[s]).sum()
        return float(np.exp(log_p))

    def emission_likelihoods(self, obs: Any) -> np.ndarray:
        """Scaled emission likelihoods of one observation for every state (max = 1)."""
        x = self._validate_observation(obs)
        B, _ = self._shifted_emissions(x[None, :])
        return B[0]

    # -------------------------------------------------------------------------
    # Forward-Backward
    # -------------------------------------------------------------------------

    def _forward(self, B: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Scaled forward recursion.

        Returns:
            alpha: (T, N), each row sums to 1
            scale: (T,) normalisers removed at each step
        """
        T = B.shape[0]
        alpha = np.zeros((T, self.n_states))
        scale = np.zeros(T)

        for t in range(T):
            prior = self.pi if t == 0 else alpha[t - 1] @ self.A
            alpha[t] = prior * B[t]
            scale[t] = alpha[t].sum()
            if scale[t] > 0:
                alpha[t] /= scale[t]
            else:
                # Evidence only where the prior is zero; restart from the emissions
                logger.warning(f"Forward pass lost all probability mass at t={t}")
                alpha[t] = B[t] / B[t].sum()

        return alpha, scale

    def _backward(self, B: np.ndarray) -> np.ndarray:
        """Scaled backward recursion from beta[T-1] = 1."""
        T = B.shape[0]
        beta = np.zeros((T, self.n_states))
        beta[-1] = 1.0

        for t in range(T - 2, -1, -1):
            beta[t] = self.A @ (B[t + 1] * beta[t + 1])
            total = beta[t].sum()
            if total > 0:
                beta[t] /= total
            else:
                beta[t] = 1.0

        return beta

    def forward_algorithm(self, observations: Any) -> np.ndarray:
        """
        Filtered state probabilities P(X_t | Y_{0:t}).

        Args:
            observations: (T, F) observation sequence, T >= 1

        Returns:
            alpha: (T, N) array whose rows each sum to 1

        Raises:
            InvalidInputError: On empty, non-finite or mis-shaped input
        """
        X = self._validate_observations(observations)
        B, _ = self._shifted_emissions(X)
        alpha, _ = self._forward(B)
        return alpha

    def backward_algorithm(self, observations: Any) -> np.ndarray:
        """
        Scaled backward messages.

        Args:
            observations: (T, F) observation sequence, T >= 1

        Returns:
            beta: (T, N) array, last row all ones, earlier rows sum to 1
        """
        X = self._validate_observations(observations)
        B, _ = self._shifted_emissions(X)
        return self._backward(B)

    def log_likelihood(self, observations: Any) -> float:
        """log P(Y_{0:T-1}) from the forward scale factors."""
        X = self._validate_observations(observations)
        B, shift = self._shifted_emissions(X)
        _, scale = self._forward(B)
        with np.errstate(divide='ignore'):
            return float(np.sum(np.log(scale)) + np.sum(shift))

    def infer_regimes(self, observations: Any) -> RegimeInference:
        """
        Smoothed posteriors plus the Viterbi path.

        Args:
            observations: (T, F) observation sequence, T >= 1

        Returns:
            RegimeInference with gamma (T, N), path (T,) and log-likelihood
        """
        X = self._validate_observations(observations)
        B, shift = self._shifted_emissions(X)
        alpha, scale = self._forward(B)
        beta = self._backward(B)

        gamma = alpha * beta
        gamma_sum = gamma.sum(axis=1, keepdims=True)
        # Disjoint alpha/beta support falls back to the filtered estimate
        gamma = np.where(gamma_sum > 0, gamma / np.where(gamma_sum > 0, gamma_sum, 1.0), alpha)

        with np.errstate(divide='ignore'):
            log_likelihood = float(np.sum(np.log(scale)) + np.sum(shift))

        path = self._viterbi_decode(X)
        logger.debug(f"Inferred regimes for T={X.shape[0]}, log-likelihood={log_likelihood:.3f}")

        return RegimeInference(posteriors=gamma, path=path, log_likelihood=log_likelihood)

    # -------------------------------------------------------------------------
    # Viterbi
    # -------------------------------------------------------------------------

    def _viterbi(self, observations: Any) -> np.ndarray:
        """
        Most likely state sequence (log-domain dynamic program).

        Ties between predecessors resolve to the lowest state index.

        Returns:
            (T,) integer array of state indices
        """
        X = self._validate_observations(observations)
        return self._viterbi_decode(X)

    def _viterbi_decode(self, X: np.ndarray) -> np.ndarray:
        T = X.shape[0]
        log_B = self._log_emissions(X)
        with np.errstate(divide='ignore'):
            log_A = np.log(self.A)
            log_pi = np.log(self.pi)

        delta = np.zeros((T, self.n_states))
        psi = np.zeros((T, self.n_states), dtype=int)

        delta[0] = log_pi + log_B[0]

        for t in range(1, T):
            # scores[i, j]: best path ending in i at t-1, then i -> j
            scores = delta[t - 1][:, None] + log_A
            # argmax returns the first maximum, i.e. the lowest index
            psi[t] = np.argmax(scores, axis=0)
            delta[t] = scores[psi[t], np.arange(self.n_states)] + log_B[t]

        states = np.zeros(T, dtype=int)
        states[-1] = int(np.argmax(delta[-1]))
        for t in range(T - 2, -1, -1):
            states[t] = psi[t + 1, states[t + 1]]

        return states

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def expected_durations(self, cap: float = 1000.0) -> np.ndarray:
        """
        Expected stay in each regime, 1 / (1 - A[k, k]) observations.

        Fully absorbing states are reported at `cap`.
        """
        stay = np.diag(self.A)
        with np.errstate(divide='ignore'):
            durations = 1.0 / (1.0 - stay)
        return np.minimum(durations, cap)

    def stationary_distribution(self) -> np.ndarray:
        """
        Long-run regime distribution.

        Left eigenvector of A for the eigenvalue closest to 1.
        """
        eigenvalues, eigenvectors = np.linalg.eig(self.A.T)
        idx = np.argmin(np.abs(eigenvalues - 1.0))
        stationary = np.real(eigenvectors[:, idx])
        stationary = np.maximum(stationary / stationary.sum(), 0.0)
        return stationary / stationary.sum()


__all__ = [
    'DEFAULT_EMISSION_MEANS',
    'DEFAULT_EMISSION_STDS',
    'persistent_transition_matrix',
    'check_stochastic_matrix',
    'RegimeInference',
    'RegimeHMM',
]
