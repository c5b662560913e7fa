"""Tests for engine settings and the JSON settings loader."""

import json
import tempfile
from pathlib import Path

import pytest

from regime_fusion.config import Config, EngineSettings, load_settings
from regime_fusion.exceptions import InvalidConfigurationError


def test_defaults_match_config():
    """Test that default settings mirror the Config constants."""
    settings = EngineSettings().validate()
    assert settings.n_regimes == Config.N_REGIMES
    assert settings.smoothing_alpha == Config.SMOOTHING_ALPHA
    assert settings.model_weights is None


def test_load_settings_valid():
    """Test loading a valid settings file."""
    payload = {
        "smoothing_window": 5,
        "smoothing_alpha": 0.5,
        "prior_strength": 20.0,
        "model_weights": {"fuzzy": 0.4, "hmm": 0.6},
    }
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(payload, f)
        f.flush()

        settings = load_settings(f.name)
        assert settings.smoothing_window == 5
        assert settings.prior_strength == 20.0
        assert settings.model_weights == {"fuzzy": 0.4, "hmm": 0.6}

    Path(f.name).unlink()


def test_load_settings_file_not_found():
    """Test that a missing settings file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        load_settings("nonexistent.json")


def test_load_settings_rejects_non_object():
    """Test that a JSON list is not accepted as settings."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump([1, 2, 3], f)
        f.flush()

        with pytest.raises(InvalidConfigurationError, match="JSON object"):
            load_settings(f.name)

    Path(f.name).unlink()


def test_unknown_setting_raises():
    """Test that unrecognised keys are reported."""
    with pytest.raises(InvalidConfigurationError, match="Unknown settings: lookback"):
        EngineSettings.from_dict({"lookback": 30})


def test_n_regimes_is_fixed():
    """Test that the regime count cannot be changed."""
    with pytest.raises(InvalidConfigurationError, match="n_regimes must be 4"):
        EngineSettings(n_regimes=5).validate()


@pytest.mark.parametrize("overrides, message", [
    ({"smoothing_window": 0}, "smoothing_window"),
    ({"smoothing_alpha": 1.5}, "smoothing_alpha"),
    ({"prior_strength": -1.0}, "prior_strength"),
    ({"calibration_blend": -0.1}, "calibration_blend"),
    ({"calibration_decay": 0.0}, "calibration_decay"),
    ({"model_weights": {"fuzzy": -1.0}}, "model weight"),
])
def test_out_of_range_settings_raise(overrides, message):
    """Test range validation of each option."""
    with pytest.raises(InvalidConfigurationError, match=message):
        EngineSettings.from_dict(overrides)


def test_to_dict_round_trip():
    """Test that settings serialise to a plain mapping accepted by from_dict."""
    settings = EngineSettings(smoothing_window=7)
    assert EngineSettings.from_dict(settings.to_dict()) == settings
