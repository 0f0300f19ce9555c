"""
Microphone input interface using PyAudio.
"""

import queue
import threading
import time
from typing import Iterator

import pyaudio

from ..core import config
from ..core.errors import DeviceError
from ..core.frames import AudioFrame, FrameSequencer, frame_samples, pcm16_to_float
from ..utils import get_logger

logger = get_logger(__name__)


class MicrophoneSource:
    """
    Microphone input using PyAudio.

    The PyAudio callback only queues raw chunks; `frames()` turns them into
    sequenced AudioFrames. A lost chunk or a dead stream raises DeviceError.
    """

    def __init__(
        self,
        sample_rate: int = config.SAMPLE_RATE,
        channels: int = config.CHANNELS,
        frame_ms: int = config.FRAME_MS,
        device_index: int | None = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_ms = frame_ms
        self.device_index = device_index
        self.frames_per_buffer = frame_samples(frame_ms, sample_rate)

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None
        self._chunks: queue.Queue[tuple[bytes, float]] = queue.Queue(
            maxsize=config.CAPTURE_QUEUE_MAX
        )
        self._lost = 0
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def _callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[None, int]:
        """PyAudio callback."""
        if status_flags & pyaudio.paInputOverflow:
            with self._lock:
                self._lost += 1
        if in_data is not None:
            try:
                self._chunks.put_nowait((in_data, time.time()))
            except queue.Full:
                with self._lock:
                    self._lost += 1
        return (None, pyaudio.paContinue)

    def start(self) -> None:
        """
        Start capturing audio from microphone.

        Raises:
            DeviceError: if the device cannot be opened
        """
        if self._stream is not None:
            return  # Already running

        self._closed.clear()
        try:
            self._pa = pyaudio.PyAudio()
            self._stream = self._pa.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._callback,
            )
            self._stream.start_stream()
        except (OSError, ValueError) as e:
            self.stop()
            raise DeviceError(f"cannot open capture device: {e}") from e
        logger.info("Microphone capture started (%d Hz)", self.sample_rate)

    def stop(self) -> None:
        """Stop capturing audio."""
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError:
                logger.warning("Capture stream did not close cleanly", exc_info=True)
            self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None

    def close(self) -> None:
        """End `frames()` after the chunks already captured."""
        self._closed.set()

    def is_active(self) -> bool:
        """Check if the stream is active."""
        return self._stream is not None and self._stream.is_active()

    def frames(self) -> Iterator[AudioFrame]:
        """
        Live frames until `close()`.

        Raises:
            DeviceError: on lost audio or if the stream stops on its own
        """
        self.start()
        sequencer = FrameSequencer(self.sample_rate)
        last_audio = time.monotonic()
        try:
            while True:
                if self._closed.is_set() and self._stream is not None:
                    self.stop()  # drain what was captured, nothing new
                with self._lock:
                    lost, self._lost = self._lost, 0
                if lost:
                    raise DeviceError(f"input overflow, {lost} chunk(s) lost")

                try:
                    in_data, ts = self._chunks.get(timeout=config.QUEUE_POLL_S)
                except queue.Empty:
                    if self._closed.is_set():
                        return
                    stalled = time.monotonic() - last_audio > config.DEVICE_STALL_S
                    if stalled and not self.is_active():
                        raise DeviceError("capture stream stopped")
                    continue

                last_audio = time.monotonic()
                # Mono int16 -> float, one channel kept if the device gave more
                samples = pcm16_to_float(in_data)
                if self.channels > 1:
                    samples = samples[:: self.channels]
                yield sequencer.make(samples, ts)
        finally:
            self.stop()

    def __enter__(self) -> "MicrophoneSource":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
