"""
Exception hierarchy for the regime classification engine.

Configuration and input errors are raised immediately and never partially
processed. Degenerate computations (no rule fired, all models silent,
sparse calibration bins) are not errors and return sentinel values instead.
"""


class RegimeEngineError(Exception):
    """Base class for all engine errors."""


class InvalidConfigurationError(RegimeEngineError, ValueError):
    """Malformed fuzzy sets, emission parameters or probability tables."""


class InvalidInputError(RegimeEngineError, ValueError):
    """Empty sequences, non-finite values or mismatched vector lengths."""


__all__ = [
    'RegimeEngineError',
    'InvalidConfigurationError',
    'InvalidInputError',
]
