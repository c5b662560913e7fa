"""
Probabilistic market-regime classification.

Fuses a fuzzy-logic signal assessor and an online HMM filter through a
confidence-weighted ensemble, calibrates the reported confidence, and
refreshes the HMM transition matrix from a Dirichlet posterior.
"""

from regime_fusion.bayesian import BayesianTransitionEstimator
from regime_fusion.calibration import ConfidenceCalibrator
from regime_fusion.config import Config, EngineSettings, load_settings
from regime_fusion.core import (
    N_REGIMES,
    REGIMES,
    CalibrationBin,
    EnsembleResult,
    FeatureVector,
    Regime,
    RegimeEstimate,
)
from regime_fusion.ensemble import RegimeEnsemble
from regime_fusion.exceptions import (
    InvalidConfigurationError,
    InvalidInputError,
    RegimeEngineError,
)
from regime_fusion.features import compute_feature_frame, frame_to_features
from regime_fusion.fuzzy import FuzzyAssessor, FuzzyRule, FuzzySet
from regime_fusion.hmm import RegimeHMM, RegimeInference
from regime_fusion.online import OnlineRegimeFilter
from regime_fusion.pipeline import RegimeClassificationPipeline, format_regime_report

VERSION = "1.0.0"

__all__ = [
    'VERSION',
    # Configuration
    'Config',
    'EngineSettings',
    'load_settings',
    # Data model
    'Regime',
    'REGIMES',
    'N_REGIMES',
    'FeatureVector',
    'RegimeEstimate',
    'EnsembleResult',
    'CalibrationBin',
    # Errors
    'RegimeEngineError',
    'InvalidConfigurationError',
    'InvalidInputError',
    # Components
    'FuzzySet',
    'FuzzyRule',
    'FuzzyAssessor',
    'RegimeHMM',
    'RegimeInference',
    'OnlineRegimeFilter',
    'BayesianTransitionEstimator',
    'RegimeEnsemble',
    'ConfidenceCalibrator',
    # Pipeline
    'RegimeClassificationPipeline',
    'format_regime_report',
    'compute_feature_frame',
    'frame_to_features',
]
