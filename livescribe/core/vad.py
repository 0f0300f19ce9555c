"""
Voice Activity Detection (VAD) gate.
Tags frames as speech or silence; tags never drop audio.
This module is independent of any transport or UI.
"""

import math
from collections import deque
from enum import Enum
from typing import Protocol, Sequence

import numpy as np
import webrtcvad

from . import config
from .frames import AudioFrame, frame_generator
from .runtime_config import SessionConfig, VadDetector, VadStrictness
from ..utils import get_logger

logger = get_logger(__name__)


class ActivityTag(str, Enum):
    SPEECH = "speech"
    SILENCE = "silence"
    UNCERTAIN = "uncertain"


class SpeechDetector(Protocol):
    """Protocol for per-frame detectors."""

    def voiced_fraction(self, frame: AudioFrame) -> float: ...


class WebRtcDetector:
    """Model-based detector using the WebRTC GMM classifier."""

    def __init__(
        self,
        aggressiveness: int = config.VAD_AGGRESSIVENESS,
        sub_frame_ms: int = config.FRAME_MS,
    ):
        self.vad = webrtcvad.Vad(int(aggressiveness))
        self.sub_frame_ms = sub_frame_ms

    def voiced_fraction(self, frame: AudioFrame) -> float:
        sub_frames = list(
            frame_generator(self.sub_frame_ms, frame.pcm16(), frame.sample_rate)
        )
        if not sub_frames:
            return 0.0

        voiced = 0
        for sub_frame in sub_frames:
            try:
                if self.vad.is_speech(sub_frame, frame.sample_rate):
                    voiced += 1
            except Exception:
                logger.debug("webrtcvad rejected frame %d", frame.index, exc_info=True)
        return voiced / len(sub_frames)


class EnergyDetector:
    """Heuristic detector: RMS level over a fixed threshold."""

    def __init__(self, threshold: float = config.ENERGY_THRESHOLD):
        self.threshold = threshold

    @staticmethod
    def level(samples: np.ndarray) -> float:
        if len(samples) == 0:
            return 0.0
        return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))

    def voiced_fraction(self, frame: AudioFrame) -> float:
        return 1.0 if self.level(frame.samples) >= self.threshold else 0.0


class VoiceActivityGate:
    """
    Classifies frames using a pluggable detector and a strictness policy.

    The gate looks at the proportion of voiced frames in a short context.
    Proportions close to the strictness threshold are Uncertain; Flexible
    resolves those to Speech, Strict resolves them to Silence.
    """

    def __init__(
        self,
        detector: SpeechDetector,
        strictness: VadStrictness = VadStrictness.FLEXIBLE,
        context_ms: int = config.VAD_CONTEXT_MS,
        frame_ms: int = config.FRAME_MS,
        margin: float = config.UNCERTAIN_MARGIN,
    ):
        self.detector = detector
        self.strictness = VadStrictness(strictness)
        self.margin = margin
        self._context: deque[float] = deque(
            maxlen=max(1, int(math.ceil(context_ms / frame_ms)))
        )

    @property
    def threshold(self) -> float:
        if self.strictness is VadStrictness.STRICT:
            return config.STRICT_VOICED_PROPORTION
        return config.FLEXIBLE_VOICED_PROPORTION

    def reset(self) -> None:
        self._context.clear()

    def raw_tag(self, proportion: float) -> ActivityTag:
        """Tag before the strictness policy is applied."""
        eps = 1e-9
        if proportion >= self.threshold + self.margin - eps:
            return ActivityTag.SPEECH
        if proportion < self.threshold - self.margin - eps:
            return ActivityTag.SILENCE
        return ActivityTag.UNCERTAIN

    def resolve(self, tag: ActivityTag) -> ActivityTag:
        if tag is not ActivityTag.UNCERTAIN:
            return tag
        if self.strictness is VadStrictness.STRICT:
            return ActivityTag.SILENCE
        return ActivityTag.SPEECH

    def classify(self, frames: Sequence[AudioFrame]) -> ActivityTag:
        """
        Classify a window of frames.

        Args:
            frames: Consecutive frames

        Returns:
            Speech or Silence (Uncertain is resolved by the strictness policy)
        """
        if not frames:
            return ActivityTag.SILENCE
        fractions = [self.detector.voiced_fraction(f) for f in frames]
        return self.resolve(self.raw_tag(sum(fractions) / len(fractions)))

    def tag(self, frame: AudioFrame) -> ActivityTag:
        """Tag the newest frame of a stream using the frames just before it as context."""
        self._context.append(self.detector.voiced_fraction(frame))
        proportion = sum(self._context) / len(self._context)
        return self.resolve(self.raw_tag(proportion))


def build_gate(session_config: SessionConfig) -> VoiceActivityGate:
    """Create the gate described by a session configuration."""
    if session_config.vad_detector is VadDetector.ENERGY:
        detector: SpeechDetector = EnergyDetector()
    else:
        detector = WebRtcDetector(aggressiveness=session_config.vad_aggressiveness)
    return VoiceActivityGate(detector, strictness=session_config.vad_strictness)
