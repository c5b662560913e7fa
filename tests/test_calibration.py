"""Tests for binned confidence calibration."""

import numpy as np
import pytest

from regime_fusion.calibration import ConfidenceCalibrator
from regime_fusion.exceptions import InvalidConfigurationError, InvalidInputError


def test_sparse_bin_passes_through():
    """Test that raw confidence is returned until a bin has enough samples."""
    calibrator = ConfidenceCalibrator(min_samples=10)
    for _ in range(3):
        calibrator.update(0.75, False)
    assert calibrator.calibrate(0.75) == 0.75


def test_blend_toward_bin_accuracy():
    """Test the convex blend of raw confidence and empirical accuracy."""
    calibrator = ConfidenceCalibrator(min_samples=2, blend=0.5)
    for correct in (True, True, False, False):
        calibrator.update(0.75, correct)
    assert calibrator.calibrate(0.75) == pytest.approx(0.5 * 0.75 + 0.5 * 0.5)
    # Other bins are still empty
    assert calibrator.calibrate(0.25) == 0.25


def test_bin_index_edges():
    """Test floor binning with 1.0 folded into the last bin."""
    calibrator = ConfidenceCalibrator(n_bins=10)
    assert calibrator.bin_index(0.0) == 0
    assert calibrator.bin_index(0.099) == 0
    assert calibrator.bin_index(0.1) == 1
    assert calibrator.bin_index(1.0) == 9


def test_invalid_confidence_raises():
    """Test that confidence outside [0, 1] is rejected."""
    calibrator = ConfidenceCalibrator()
    with pytest.raises(InvalidInputError):
        calibrator.update(1.5, True)
    with pytest.raises(InvalidInputError):
        calibrator.calibrate(float("nan"))


def test_calibrated_stream_recovers_accuracy():
    """Test bins learn accuracy from outcomes drawn at the stated confidence."""
    rng = np.random.default_rng(2024)
    calibrator = ConfidenceCalibrator(n_bins=10, min_samples=10, blend=1.0)
    centers = np.arange(10) / 10.0 + 0.05

    for center in centers:
        for hit in rng.random(2000) < center:
            calibrator.update(center, bool(hit))

    table = calibrator.reliability_table()
    np.testing.assert_allclose(table["accuracy"].to_numpy(), centers, atol=0.05)
    assert table["accuracy"].is_monotonic_increasing
    for center in centers:
        assert calibrator.calibrate(center) == pytest.approx(center, abs=0.05)
    assert calibrator.expected_calibration_error() < 0.05


def test_decay_forgets_old_outcomes():
    """Test that decay shrinks every bin before each update."""
    calibrator = ConfidenceCalibrator(decay=0.5)
    calibrator.update(0.15, True)
    calibrator.update(0.85, True)
    bins = calibrator.bins
    assert bins[1].count == pytest.approx(0.5)
    assert bins[1].correct_count == pytest.approx(0.5)
    assert bins[8].count == pytest.approx(1.0)


def test_bins_returns_copies():
    """Test that callers cannot mutate calibrator state through bins."""
    calibrator = ConfidenceCalibrator()
    calibrator.bins[0].count = 100.0
    assert calibrator.bins[0].count == 0.0


def test_reliability_table_layout():
    """Test the per-bin diagnostic frame."""
    calibrator = ConfidenceCalibrator(n_bins=4, min_samples=1)
    calibrator.update(0.9, True)
    table = calibrator.reliability_table()
    assert list(table.columns) == ["lower", "upper", "count", "correct", "accuracy", "trusted"]
    assert len(table) == 4
    assert table["trusted"].tolist() == [False, False, False, True]
    assert np.isnan(table["accuracy"].iloc[0])
    assert table["accuracy"].iloc[3] == 1.0


def test_reset_clears_bins():
    """Test that reset empties every bin."""
    calibrator = ConfidenceCalibrator()
    calibrator.update(0.5, True)
    calibrator.reset()
    assert all(b.count == 0.0 for b in calibrator.bins)


def test_invalid_settings_raise():
    """Test constructor validation."""
    with pytest.raises(InvalidConfigurationError, match="n_bins"):
        ConfidenceCalibrator(n_bins=0)
    with pytest.raises(InvalidConfigurationError, match="blend"):
        ConfidenceCalibrator(blend=1.5)
    with pytest.raises(InvalidConfigurationError, match="decay"):
        ConfidenceCalibrator(decay=0.0)
