from __future__ import annotations

import threading

import numpy as np
import pytest

from livescribe.core import config
from livescribe.core.backend import ModelHandle, Token
from livescribe.core.errors import BackendRuntimeError, BackendUnavailable, DeviceError
from livescribe.core.frames import FrameSequencer, frame_samples
from livescribe.core.vad import EnergyDetector, VoiceActivityGate

FRAME_LEN = frame_samples(config.FRAME_MS, config.SAMPLE_RATE)


def tone(n: int = FRAME_LEN, amplitude: float = 0.5, freq: float = 440.0, offset: int = 0) -> np.ndarray:
    t = (np.arange(n) + offset) / config.SAMPLE_RATE
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(n: int = FRAME_LEN) -> np.ndarray:
    return np.zeros(n, dtype=np.float32)


def make_frames(pattern: str, sample_rate: int = config.SAMPLE_RATE) -> list:
    """One 20 ms frame per character: 's' tone, '.' silence."""
    seq = FrameSequencer(sample_rate)
    frames = []
    for i, ch in enumerate(pattern):
        samples = tone(offset=i * FRAME_LEN) if ch == "s" else silence()
        frames.append(seq.make(samples, float(i)))
    return frames


def speech_frames(speech_ms: int, silence_ms: int = 0) -> list:
    n_speech = speech_ms // config.FRAME_MS
    n_silence = silence_ms // config.FRAME_MS
    return make_frames("s" * n_speech + "." * n_silence)


class FakeRuntime:
    """
    Scripted inference runtime.

    - available: devices reported by is_available
    - fail: device -> exception raised by run on that device
    - words: callable(window_index_guess, pcm) -> token list; defaults to one
      token per call named w<call>
    """

    def __init__(self, available=("cuda-fp16", "cuda", "cpu"), fail=None, words=None):
        self.available = set(available)
        self.fail = dict(fail or {})
        self.words = words
        self.calls: list[tuple[str, int]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def is_available(self, device: str) -> bool:
        return device in self.available

    def run(self, model, pcm, device, sample_rate):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append((device, len(pcm)))
            call = len(self.calls)
        try:
            if device not in self.available:
                raise BackendUnavailable(f"{device} missing")
            if device in self.fail:
                raise self.fail[device]
            if self.words is not None:
                return list(self.words(call, pcm))
            duration = len(pcm) / sample_rate
            return [Token(f"w{call}", 0.0, duration)]
        finally:
            with self._lock:
                self.active -= 1


class ListSource:
    """Finite frame source; optionally raises DeviceError after `fail_after` frames."""

    def __init__(self, frames, fail_after: int | None = None):
        self._frames = list(frames)
        self.fail_after = fail_after
        self.closed = False
        self.yielded = 0

    def frames(self):
        for i, frame in enumerate(self._frames):
            if self.closed:
                return
            if self.fail_after is not None and i >= self.fail_after:
                raise DeviceError("capture device disconnected")
            self.yielded += 1
            yield frame

    def close(self) -> None:
        self.closed = True


def energy_gate(session_config) -> VoiceActivityGate:
    return VoiceActivityGate(EnergyDetector(), strictness=session_config.vad_strictness)


@pytest.fixture
def model_handle() -> ModelHandle:
    return ModelHandle(name="fake-model")


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def flaky_fp16() -> FakeRuntime:
    return FakeRuntime(fail={"cuda-fp16": BackendRuntimeError("fp16 kernel failed")})
