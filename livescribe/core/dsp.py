"""
Signal conditioning for the live inference path.

Neither filter touches what the recorder stores.
"""

import math

import numpy as np

from . import config


class DCBlock:
    """
    First-order DC blocking filter.

    y(n) = x(n) - x(n - 1) + R * y(n - 1)

    State carries over between calls so consecutive frames filter as one
    continuous signal.
    """

    def __init__(
        self,
        sample_rate: int = config.SAMPLE_RATE,
        cutoff_hz: float = config.DC_BLOCK_CUTOFF_HZ,
    ):
        self.sample_rate = sample_rate
        self.cutoff_hz = cutoff_hz
        self.r = self._compute_r(sample_rate, cutoff_hz)
        self._prev_input = 0.0
        self._prev_output = 0.0

    @staticmethod
    def _compute_r(sample_rate: float, cutoff_hz: float) -> float:
        if sample_rate <= 0:
            return config.DC_BLOCK_DEFAULT_R
        if cutoff_hz > sample_rate / 2.0:
            r = math.exp(-2.0 * math.pi * cutoff_hz / sample_rate)
        else:
            r = 1.0 - (2.0 * math.pi * cutoff_hz / sample_rate)
        if not math.isfinite(r):
            r = config.DC_BLOCK_DEFAULT_R
        return r

    def reset(self) -> None:
        self._prev_input = 0.0
        self._prev_output = 0.0

    def process(self, samples: np.ndarray) -> np.ndarray:
        out = np.empty(len(samples), dtype=np.float32)
        prev_in = self._prev_input
        prev_out = self._prev_output
        r = self.r
        for i, x in enumerate(samples.tolist()):
            y = x - prev_in + r * prev_out
            out[i] = y
            prev_in = x
            prev_out = y
        self._prev_input = prev_in
        self._prev_output = prev_out
        return out


class AudioGain:
    """Input gain in decibels, clamped to [0, MAX_INPUT_GAIN_DB]."""

    def __init__(self, db: float = 0.0):
        self.db = float(min(max(db, 0.0), config.MAX_INPUT_GAIN_DB))
        self.multiplier = 10.0 ** (self.db / 20.0)

    @property
    def no_gain(self) -> bool:
        return self.db <= 1e-6

    def apply(self, samples: np.ndarray) -> np.ndarray:
        if self.no_gain:
            return samples
        return np.clip(samples * self.multiplier, -1.0, 1.0).astype(np.float32)
