"""
Bayesian Transition Estimator
=============================

Dirichlet-Categorical model of the regime transition matrix. Each "from"
row i carries a Dirichlet posterior with concentration alpha_i:

    prior:      alpha_i = prior row (diagonal-heavy: regimes persist)
    update:     alpha_i += counts of observed transitions i -> j
    mean:       E[A_ij]   = alpha_ij / alpha_i0
    variance:   Var[A_ij] = alpha_ij (alpha_i0 - alpha_ij) / (alpha_i0^2 (alpha_i0 + 1))

where alpha_i0 = sum_j alpha_ij. Each marginal A_ij is Beta(alpha_ij,
alpha_i0 - alpha_ij), which gives closed-form credible intervals.

Updates accumulate: feeding the same sequence twice counts it twice.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import beta as beta_dist

from regime_fusion.config import Config
from regime_fusion.core import Regime
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError
from regime_fusion.hmm import RegimeHMM

logger = logging.getLogger(__name__)


def persistence_prior(
    n_regimes: int,
    prior_strength: float = Config.PRIOR_STRENGTH,
    prior_persistence: float = Config.PRIOR_PERSISTENCE
) -> np.ndarray:
    """
    Diagonal-heavy Dirichlet prior.

    Each row holds `prior_strength` pseudo-counts, a `prior_persistence`
    share of them on the diagonal and the rest spread evenly.
    """
    if n_regimes == 1:
        return np.full((1, 1), float(prior_strength))
    off = prior_strength * (1.0 - prior_persistence) / (n_regimes - 1)
    prior = np.full((n_regimes, n_regimes), off)
    np.fill_diagonal(prior, prior_strength * prior_persistence)
    return prior


class BayesianTransitionEstimator:
    """
    Conjugate estimator of the HMM transition matrix.

    update() mutates the posterior and is not thread-safe; serialise
    concurrent callers with an external lock.

    Usage:
        estimator = BayesianTransitionEstimator(prior_strength=10.0)
        estimator.update(hmm.infer_regimes(observations).path)
        estimator.apply_to(hmm)
    """

    def __init__(
        self,
        n_regimes: int = Config.N_REGIMES,
        prior_strength: float = Config.PRIOR_STRENGTH,
        prior_persistence: float = Config.PRIOR_PERSISTENCE,
        prior: Optional[Any] = None
    ):
        """
        Args:
            n_regimes: Number of regimes N
            prior_strength: Pseudo-counts per prior row (> 0)
            prior_persistence: Diagonal share of the prior, in (0, 1)
            prior: Explicit (N, N) strictly positive concentration matrix;
                overrides prior_strength and prior_persistence

        Raises:
            InvalidConfigurationError: On non-positive concentrations
        """
        if n_regimes < 1:
            raise InvalidConfigurationError(f"n_regimes must be positive, got {n_regimes}")
        self.n_regimes = n_regimes

        if prior is None:
            if not np.isfinite(prior_strength) or prior_strength <= 0:
                raise InvalidConfigurationError(
                    f"prior_strength must be positive, got {prior_strength}"
                )
            if n_regimes > 1 and not 0.0 < prior_persistence < 1.0:
                raise InvalidConfigurationError(
                    f"prior_persistence must be in (0, 1), got {prior_persistence}"
                )
            prior = persistence_prior(n_regimes, prior_strength, prior_persistence)

        prior = np.array(prior, dtype=float)
        if prior.shape != (n_regimes, n_regimes):
            raise InvalidConfigurationError(
                f"prior must have shape ({n_regimes}, {n_regimes}), got {prior.shape}"
            )
        if not np.all(np.isfinite(prior)) or np.any(prior <= 0):
            raise InvalidConfigurationError("prior concentrations must be finite and > 0")

        self.prior_alpha = prior
        self._counts = np.zeros_like(prior)
        self.alpha = prior.copy()
        self._n_transitions = 0

    # -------------------------------------------------------------------------
    # Updating
    # -------------------------------------------------------------------------

    def _validate_sequence(self, regime_sequence: Sequence[Any]) -> np.ndarray:
        try:
            seq = np.asarray([int(r) for r in regime_sequence], dtype=int)
        except (TypeError, ValueError):
            raise InvalidInputError(
                "Regime sequence must contain Regime members or integers"
            ) from None
        if seq.size and (seq.min() < 0 or seq.max() >= self.n_regimes):
            raise InvalidInputError(
                f"Regime labels must be in [0, {self.n_regimes}), "
                f"got range [{seq.min()}, {seq.max()}]"
            )
        return seq

    def update(self, regime_sequence: Sequence[Any]) -> np.ndarray:
        """
        Add the transitions of a decoded or realised regime sequence.

        Args:
            regime_sequence: Regime members or integer indices, in time order

        Returns:
            The (N, N) transition counts added by this call

        Raises:
            InvalidInputError: If a label is outside [0, N)
        """
        seq = self._validate_sequence(regime_sequence)

        counts = np.zeros((self.n_regimes, self.n_regimes))
        if seq.size >= 2:
            np.add.at(counts, (seq[:-1], seq[1:]), 1.0)
        self._counts += counts
        self.alpha = self.prior_alpha + self._counts
        n_new = int(counts.sum())
        self._n_transitions += n_new
        logger.debug(f"Added {n_new} transitions ({self._n_transitions} total)")
        return counts

    def reset(self) -> None:
        """Discard all observed transitions and return to the prior."""
        self._counts = np.zeros_like(self.prior_alpha)
        self.alpha = self.prior_alpha.copy()
        self._n_transitions = 0

    @property
    def transition_counts(self) -> np.ndarray:
        """Observed counts accumulated on top of the prior."""
        return self._counts.copy()

    @property
    def n_transitions(self) -> int:
        return self._n_transitions

    # -------------------------------------------------------------------------
    # Posterior Summaries
    # -------------------------------------------------------------------------

    def get_posterior_mean(self) -> np.ndarray:
        """Row-normalised concentrations; row-stochastic by construction."""
        return self.alpha / self.alpha.sum(axis=1, keepdims=True)

    def get_posterior_uncertainty(self) -> np.ndarray:
        """Per-entry posterior standard deviation (closed form)."""
        a0 = self.alpha.sum(axis=1, keepdims=True)
        variance = self.alpha * (a0 - self.alpha) / (a0 ** 2 * (a0 + 1.0))
        return np.sqrt(variance)

    def credible_intervals(self, level: float = 0.95) -> Tuple[np.ndarray, np.ndarray]:
        """
        Equal-tailed credible bounds for every A_ij from its Beta marginal.

        Returns:
            (lower, upper), each (N, N)
        """
        if not 0.0 < level < 1.0:
            raise InvalidInputError(f"level must be in (0, 1), got {level}")
        a0 = self.alpha.sum(axis=1, keepdims=True)
        rest = a0 - self.alpha
        tail = (1.0 - level) / 2.0
        if self.n_regimes == 1:
            return np.ones((1, 1)), np.ones((1, 1))
        lower = beta_dist.ppf(tail, self.alpha, rest)
        upper = beta_dist.ppf(1.0 - tail, self.alpha, rest)
        return lower, upper

    def sample_transition_matrix(self, n: int = 1, random_state: Optional[Any] = None) -> np.ndarray:
        """
        Draw full transition matrices from the posterior.

        Each row is sampled independently from its own Dirichlet.

        Args:
            n: Number of matrices (>= 1)
            random_state: Seed or numpy Generator

        Returns:
            (n, N, N) array of row-stochastic matrices
        """
        if int(n) < 1:
            raise InvalidInputError(f"n must be >= 1, got {n}")
        rng = np.random.default_rng(random_state)
        samples = np.empty((int(n), self.n_regimes, self.n_regimes))
        for i in range(self.n_regimes):
            samples[:, i, :] = rng.dirichlet(self.alpha[i], size=int(n))
        return samples

    def expected_durations(self) -> np.ndarray:
        """Expected regime durations implied by the posterior mean."""
        stay = np.diag(self.get_posterior_mean())
        with np.errstate(divide='ignore'):
            return 1.0 / (1.0 - stay)

    def apply_to(self, hmm: RegimeHMM) -> np.ndarray:
        """
        Install the posterior mean as the HMM's transition matrix.

        Returns:
            The installed matrix
        """
        if hmm.n_states != self.n_regimes:
            raise InvalidConfigurationError(
                f"HMM has {hmm.n_states} states, estimator has {self.n_regimes}"
            )
        mean = self.get_posterior_mean()
        hmm.set_transition_matrix(mean)
        logger.info(
            f"Refreshed transition matrix from {self._n_transitions} transitions; "
            f"persistence={np.round(np.diag(mean), 3).tolist()}"
        )
        return mean

    def summary(self) -> dict:
        """Posterior mean, std and duration per regime, keyed by label."""
        mean = self.get_posterior_mean()
        std = self.get_posterior_uncertainty()
        durations = self.expected_durations()
        result = {}
        for i in range(self.n_regimes):
            key = Regime(i).label if i < Regime.UNKNOWN else str(i)
            result[key] = {
                'self_transition': float(mean[i, i]),
                'self_transition_std': float(std[i, i]),
                'expected_duration': float(durations[i]),
            }
        return result


__all__ = [
    'persistence_prior',
    'BayesianTransitionEstimator',
]
