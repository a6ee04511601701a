"""RMS loudness estimate for raw 16-bit sample blocks."""

from __future__ import annotations

from typing import Union

import numpy as np

from .source import AudioBlock


class InvalidInput(ValueError):
    """Raised when the estimator is handed an empty block."""


def estimate(block: Union[AudioBlock, np.ndarray]) -> float:
    """
    Return the loudness of a block in dB relative to one sample unit.

    Silence maps to exactly 0.0 instead of negative infinity. Blocks whose
    RMS is below one sample unit are floored at 0.0 as well, so readings
    stay on the non-negative scale the threshold is configured in.
    """
    samples = block.samples if isinstance(block, AudioBlock) else np.asarray(block)
    if samples.size == 0:
        raise InvalidInput("Cannot estimate loudness of an empty audio block")

    # int16 squares overflow, so widen first.
    values = samples.astype(np.float64, copy=False).ravel()
    rms = float(np.sqrt(np.mean(np.square(values))))
    if rms > 0:
        return max(0.0, float(20.0 * np.log10(rms)))
    return 0.0


class LoudnessEstimator:
    """Callable wrapper so the sampling loop can take any estimator."""

    def __call__(self, block: Union[AudioBlock, np.ndarray]) -> float:
        return estimate(block)
