"""
Audio frames and PCM helpers.
"""

from dataclasses import dataclass, field
from typing import Iterator

import numpy as np

from . import config
from .errors import DeviceError


def pcm16_to_float(audio_bytes: bytes) -> np.ndarray:
    """Convert raw PCM (int16, mono) to float32 normalized to [-1, 1]."""
    audio_np = np.frombuffer(audio_bytes, dtype=np.int16).astype(np.float32)
    audio_np /= 32768.0
    return audio_np


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert normalized float samples to raw PCM (int16, mono)."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16).tobytes()


def frame_generator(
    frame_ms: int, audio_bytes: bytes, sample_rate: int
) -> Iterator[bytes]:
    """Yield frames (bytes) of length frame_ms from audio_bytes."""
    frame_size = int(sample_rate * (frame_ms / 1000.0)) * config.SAMPLE_WIDTH
    offset = 0
    total = len(audio_bytes)
    while offset + frame_size <= total:
        yield audio_bytes[offset : offset + frame_size]
        offset += frame_size


def frame_samples(frame_ms: int = config.FRAME_MS, sample_rate: int = config.SAMPLE_RATE) -> int:
    return int(sample_rate * frame_ms / 1000)


@dataclass(frozen=True, eq=False)
class AudioFrame:
    """
    Fixed-duration slice of mono audio.

    `samples` is a read-only float32 array; `index` is the gapless sequence
    number within the session and `timestamp` the capture wall-clock time.
    """

    index: int
    samples: np.ndarray
    sample_rate: int
    timestamp: float
    start_sample: int = field(default=0)

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.flags.writeable:
            samples = samples.copy()
            samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    @property
    def num_samples(self) -> int:
        return len(self.samples)

    @property
    def end_sample(self) -> int:
        return self.start_sample + self.num_samples

    @property
    def duration_ms(self) -> float:
        return self.num_samples * 1000.0 / self.sample_rate

    @property
    def start_s(self) -> float:
        return self.start_sample / self.sample_rate

    @property
    def end_s(self) -> float:
        return self.end_sample / self.sample_rate

    def pcm16(self) -> bytes:
        return float_to_pcm16(self.samples)

    def with_samples(self, samples: np.ndarray) -> "AudioFrame":
        """Same position in the stream, different signal (used by the live conditioning path)."""
        return AudioFrame(
            index=self.index,
            samples=samples,
            sample_rate=self.sample_rate,
            timestamp=self.timestamp,
            start_sample=self.start_sample,
        )


class FrameSequencer:
    """Stamps consecutive chunks of samples with gapless indices and offsets."""

    def __init__(self, sample_rate: int = config.SAMPLE_RATE):
        self.sample_rate = sample_rate
        self._next_index = 0
        self._next_sample = 0

    def make(self, samples: np.ndarray, timestamp: float) -> AudioFrame:
        frame = AudioFrame(
            index=self._next_index,
            samples=samples,
            sample_rate=self.sample_rate,
            timestamp=timestamp,
            start_sample=self._next_sample,
        )
        self._next_index += 1
        self._next_sample += frame.num_samples
        return frame


class SequenceChecker:
    """Detects gaps and reordering in a frame stream."""

    def __init__(self, first_index: int = 0):
        self.expected = first_index

    def check(self, frame: AudioFrame) -> None:
        if frame.index != self.expected:
            raise DeviceError(
                f"frame sequence gap: expected {self.expected}, got {frame.index} "
                "(device underrun)"
            )
        self.expected = frame.index + 1
