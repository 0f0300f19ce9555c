"""
Window scheduler: the buffering-strategy state machine.

Tagged frames go in and inference windows come out. Continuous mode emits as
soon as enough speech has accumulated; buffered mode waits for a larger
target. Each window carries a look-back overlap from the previous one so
words are not cut at the boundary. Only one window is ever dispatched at a
time.
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum

import numpy as np

from . import config
from .frames import AudioFrame
from .runtime_config import BufferingMode, SessionConfig
from .vad import ActivityTag
from ..utils import get_logger

logger = get_logger(__name__)


class WindowKind(str, Enum):
    LEADING = "leading"
    OVERLAP = "overlap"
    FINAL = "final"


class SchedulerState(str, Enum):
    ACCUMULATING = "accumulating"
    READY_CONTINUOUS = "ready_continuous"
    READY_BUFFERED = "ready_buffered"
    DISPATCHED = "dispatched"


@dataclass(frozen=True, eq=False)
class AudioWindow:
    """Contiguous span of frames handed to inference as one unit."""

    index: int
    kind: WindowKind
    frames: tuple[AudioFrame, ...]
    overlap_ms: float = 0.0
    speech_ms: float = 0.0
    flushed: bool = False

    @property
    def sample_rate(self) -> int:
        return self.frames[0].sample_rate if self.frames else config.SAMPLE_RATE

    @property
    def start_sample(self) -> int:
        return self.frames[0].start_sample if self.frames else 0

    @property
    def end_sample(self) -> int:
        return self.frames[-1].end_sample if self.frames else 0

    @property
    def start_s(self) -> float:
        return self.start_sample / self.sample_rate

    @property
    def end_s(self) -> float:
        return self.end_sample / self.sample_rate

    @property
    def duration_ms(self) -> float:
        return (self.end_sample - self.start_sample) * 1000.0 / self.sample_rate

    @property
    def samples(self) -> np.ndarray:
        if not self.frames:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate([f.samples for f in self.frames])


def _duration_ms(frames) -> float:
    return sum(f.duration_ms for f in frames)


class WindowScheduler:
    """
    Accumulates tagged frames into windows.

    States: Accumulating -> Ready{Continuous,Buffered} -> Dispatched -> Accumulating.
    """

    def __init__(
        self,
        mode: BufferingMode = BufferingMode.CONTINUOUS,
        buffer_ms: int = config.SHORT_BUFFER_MS,
        overlap_ms: int = config.CONTINUOUS_OVERLAP_MS,
        silence_flush_ms: int = config.SILENCE_FLUSH_MS,
        min_speech_ms: int = config.CONTINUOUS_MIN_SPEECH_MS,
        max_window_ms: int = config.WINDOW_MAX_MS,
    ):
        self.mode = BufferingMode(mode)
        self.buffer_ms = buffer_ms
        self.overlap_ms = overlap_ms
        self.silence_flush_ms = silence_flush_ms
        self.min_speech_ms = min_speech_ms
        self.max_window_ms = max_window_ms

        self._lookback: list[AudioFrame] = []
        self._buffer: list[AudioFrame] = []
        self._speech_ms = 0.0
        self._silence_run_ms = 0.0
        self._idle = False  # silence-flushed, waiting for speech

        self._ready: deque[AudioWindow] = deque()
        self._in_flight: AudioWindow | None = None
        self._next_index = 0
        self._finished = False

    @classmethod
    def from_config(cls, session_config: SessionConfig) -> "WindowScheduler":
        return cls(
            mode=session_config.buffering_mode,
            buffer_ms=session_config.buffer_ms,
            overlap_ms=session_config.effective_overlap_ms,
            silence_flush_ms=session_config.silence_flush_ms,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        if self._in_flight is not None:
            return SchedulerState.DISPATCHED
        if self._ready:
            if self.mode is BufferingMode.CONTINUOUS:
                return SchedulerState.READY_CONTINUOUS
            return SchedulerState.READY_BUFFERED
        return SchedulerState.ACCUMULATING

    @property
    def in_flight(self) -> AudioWindow | None:
        return self._in_flight

    @property
    def pending(self) -> int:
        """Windows emitted but not yet completed."""
        return len(self._ready) + (1 if self._in_flight is not None else 0)

    @property
    def buffered_ms(self) -> float:
        return _duration_ms(self._buffer)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------
    def push(self, frame: AudioFrame, tag: ActivityTag) -> bool:
        """
        Add a tagged frame.

        Returns:
            True if a window became ready because of this frame
        """
        if self._finished:
            raise RuntimeError("scheduler already finished")

        self._buffer.append(frame)
        if tag is ActivityTag.SPEECH:
            self._speech_ms += frame.duration_ms
            self._silence_run_ms = 0.0
            self._idle = False
        else:
            self._silence_run_ms += frame.duration_ms

        if self._idle:
            self._trim_idle_silence()
            return False

        buffered = self.buffered_ms
        if buffered >= self.max_window_ms:
            self._emit(WindowKind.OVERLAP)
            return True

        if self.mode is BufferingMode.CONTINUOUS:
            if self._speech_ms >= self.min_speech_ms:
                self._emit(WindowKind.OVERLAP)
                return True
        elif buffered >= self.buffer_ms and self._speech_ms > 0:
            self._emit(WindowKind.OVERLAP)
            return True

        if self._silence_run_ms >= self.silence_flush_ms:
            self._emit(WindowKind.OVERLAP, flushed=True)
            self._idle = True
            return True

        return False

    def _trim_idle_silence(self) -> None:
        # Keep at most one overlap of leading silence while idle.
        keep_ms = max(self.overlap_ms, self._buffer[-1].duration_ms)
        while len(self._buffer) > 1 and _duration_ms(self._buffer[1:]) >= keep_ms:
            self._buffer.pop(0)
            self._lookback = []

    def _emit(self, kind: WindowKind, flushed: bool = False) -> AudioWindow:
        if self._next_index == 0 and kind is WindowKind.OVERLAP:
            kind = WindowKind.LEADING
        frames = tuple(self._lookback + self._buffer)
        window = AudioWindow(
            index=self._next_index,
            kind=kind,
            frames=frames,
            overlap_ms=_duration_ms(self._lookback),
            speech_ms=self._speech_ms,
            flushed=flushed,
        )
        self._next_index += 1
        self._ready.append(window)

        lookback: list[AudioFrame] = []
        for f in reversed(frames):
            if _duration_ms(lookback) >= self.overlap_ms:
                break
            lookback.insert(0, f)
        self._lookback = lookback if self.overlap_ms > 0 else []
        self._buffer = []
        self._speech_ms = 0.0
        self._silence_run_ms = 0.0

        logger.debug(
            "Window %d ready (%s, %.0f ms, %.0f ms speech%s)",
            window.index,
            window.kind.value,
            window.duration_ms,
            window.speech_ms,
            ", silence flush" if flushed else "",
        )
        return window

    def finish(self) -> AudioWindow | None:
        """
        Stop accepting frames and emit the remaining audio as a Final window.

        Pure silence left in the buffer is not worth an inference pass.
        """
        self._finished = True
        if not self._buffer or self._speech_ms <= 0:
            self._buffer = []
            return None
        return self._emit(WindowKind.FINAL)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def next_window(self) -> AudioWindow | None:
        """Move the oldest ready window to Dispatched, if nothing is in flight."""
        if self._in_flight is not None or not self._ready:
            return None
        self._in_flight = self._ready.popleft()
        return self._in_flight

    def complete(self, index: int) -> None:
        """Mark the dispatched window as consumed."""
        if self._in_flight is None or self._in_flight.index != index:
            raise ValueError(f"window {index} is not in flight")
        self._in_flight = None
