"""
Audio file input: a finite, restartable frame source for offline runs and
for replaying a recording through the live pipeline.
"""

import threading
import time
from typing import Iterator

import librosa
import numpy as np
import soundfile as sf

from ..core import config
from ..core.errors import DeviceError
from ..core.frames import AudioFrame, FrameSequencer, frame_samples


def load_wav(path: str, sample_rate: int = config.SAMPLE_RATE) -> np.ndarray:
    """
    Load an audio file as mono float32 at `sample_rate`.

    Any format libsndfile reads is accepted (PCM 8/16/24/32, float, ...).

    Raises:
        DeviceError: if the file cannot be read
    """
    try:
        audio, rate = sf.read(path, dtype="float32", always_2d=True)
    except (sf.SoundFileError, RuntimeError, OSError) as e:
        raise DeviceError(f"cannot read {path}: {e}") from e

    # Down-mix to mono
    audio = audio.mean(axis=1)
    if rate != sample_rate and len(audio):
        audio = librosa.resample(audio, orig_sr=rate, target_sr=sample_rate)
    return np.ascontiguousarray(audio, dtype=np.float32)


class WavFileSource:
    """
    Frames from an audio file.

    Each call to `frames()` restarts from the beginning. The last frame is
    shorter when the file does not end on a frame boundary. With
    `realtime=True` frames are released at capture pace.
    """

    def __init__(
        self,
        path: str,
        sample_rate: int = config.SAMPLE_RATE,
        frame_ms: int = config.FRAME_MS,
        realtime: bool = False,
    ):
        self.path = path
        self.sample_rate = sample_rate
        self.frame_ms = frame_ms
        self.realtime = realtime
        self._samples: np.ndarray | None = None
        self._stop = threading.Event()

    @property
    def samples(self) -> np.ndarray:
        if self._samples is None:
            self._samples = load_wav(self.path, self.sample_rate)
        return self._samples

    @property
    def duration_s(self) -> float:
        return len(self.samples) / self.sample_rate

    def frames(self) -> Iterator[AudioFrame]:
        self._stop.clear()
        samples = self.samples
        size = frame_samples(self.frame_ms, self.sample_rate)
        sequencer = FrameSequencer(self.sample_rate)
        started = time.monotonic()

        for offset in range(0, len(samples), size):
            if self._stop.is_set():
                return
            if self.realtime:
                due = started + offset / self.sample_rate
                delay = due - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
            yield sequencer.make(samples[offset : offset + size], time.time())

    def close(self) -> None:
        """End an ongoing `frames()` iteration early."""
        self._stop.set()
