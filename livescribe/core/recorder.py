"""
Parallel raw-audio recorder.

Every captured frame is handed to `append()` straight from the capture
loop; a writer thread turns them into a WAV file that is flushed
periodically and finalized at session end. The recorder never blocks
capture and never depends on gating or inference.
"""

import glob
import os
import queue
import threading
import time
import wave
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

import soundfile as sf

from . import config
from .errors import RecordingError
from .frames import AudioFrame
from ..utils import get_logger

logger = get_logger(__name__)

_STOP = object()


@dataclass(frozen=True)
class RecordingArtifact:
    """Finalized recording handed to the offline path."""

    path: str
    sample_rate: int
    num_samples: int
    frames: int
    complete: bool

    @property
    def duration_s(self) -> float:
        return self.num_samples / self.sample_rate if self.sample_rate else 0.0


@dataclass
class RecordingHandle:
    path: str
    sample_rate: int
    frames_written: int = 0
    samples_written: int = 0
    first_index: int | None = None
    last_index: int | None = None
    gaps: int = 0
    error: RecordingError | None = None
    finalized: bool = False


def recording_path(directory: str, prefix: str = config.RECORDING_PREFIX) -> str:
    """Timestamped, non-clashing WAV path inside `directory`."""
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = os.path.join(directory, f"{prefix}_{stamp}.wav")
    n = 1
    while os.path.exists(path):
        path = os.path.join(directory, f"{prefix}_{stamp}_{n}.wav")
        n += 1
    return path


def list_recordings(directory: str, prefix: str = config.RECORDING_PREFIX) -> list[str]:
    """Recordings in `directory`, oldest first."""
    paths = glob.glob(os.path.join(directory, f"{prefix}_*.wav"))
    return sorted(paths, key=lambda p: (os.path.getmtime(p), p))


def latest_recording(directory: str, prefix: str = config.RECORDING_PREFIX) -> str | None:
    paths = list_recordings(directory, prefix)
    return paths[-1] if paths else None


def prune_recordings(
    directory: str,
    keep: int = config.RECORDING_CACHE_SIZE,
    prefix: str = config.RECORDING_PREFIX,
) -> list[str]:
    """Delete all but the newest `keep` recordings. Returns the removed paths."""
    paths = list_recordings(directory, prefix)
    doomed = paths[: max(0, len(paths) - keep)]
    for path in doomed:
        os.remove(path)
        logger.info("Removed old recording %s", path)
    return doomed


def clear_recordings(
    directory: str, prefix: str = config.RECORDING_PREFIX
) -> list[str]:
    """Empty the recording cache."""
    return prune_recordings(directory, keep=0, prefix=prefix)


class ExportFormat(str, Enum):
    FLOAT32 = "f32"
    INT16 = "i16"

    @property
    def subtype(self) -> str:
        return "FLOAT" if self is ExportFormat.FLOAT32 else "PCM_16"


def export_recording(
    recording: RecordingArtifact | str,
    out_path: str,
    fmt: ExportFormat = ExportFormat.FLOAT32,
) -> str:
    """
    Copy a cached recording to `out_path` as 32-bit float or 16-bit PCM WAV.

    Raises:
        RecordingError: if the recording cannot be read or the copy written
    """
    fmt = ExportFormat(fmt)
    src = recording.path if isinstance(recording, RecordingArtifact) else recording
    if not out_path.lower().endswith(".wav"):
        out_path += ".wav"
    try:
        audio, rate = sf.read(src, dtype="float32")
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        sf.write(out_path, audio, rate, subtype=fmt.subtype)
    except (RuntimeError, OSError) as e:
        raise RecordingError(f"cannot export {src} to {out_path}: {e}") from e
    logger.info("Exported %s to %s (%s)", src, out_path, fmt.value)
    return out_path


class ParallelRecorder:
    """
    Persists raw frames to a WAV file from its own thread.

    Write failures surface as RecordingError through `on_error` and in the
    handle; they never propagate into the capture loop.
    """

    def __init__(
        self,
        directory: str = config.RECORDINGS_DIR,
        sample_rate: int = config.SAMPLE_RATE,
        flush_interval_s: float = config.RECORDING_FLUSH_S,
        on_error: Callable[[RecordingError], None] | None = None,
        path: str | None = None,
    ):
        self.directory = directory
        self.sample_rate = sample_rate
        self.flush_interval_s = flush_interval_s
        self.on_error = on_error
        self.handle = RecordingHandle(
            path=path or recording_path(directory), sample_rate=sample_rate
        )

        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._thread: threading.Thread | None = None
        self._file = None
        self._wav: wave.Wave_write | None = None
        self._pending = bytearray()
        self._last_flush = 0.0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> RecordingHandle:
        """
        Open the WAV file and start the writer thread.

        Raises:
            RecordingError: if the file cannot be created
        """
        try:
            os.makedirs(os.path.dirname(self.handle.path) or ".", exist_ok=True)
            self._file = open(self.handle.path, "wb")
            self._wav = wave.open(self._file, "wb")
            self._wav.setnchannels(config.CHANNELS)
            self._wav.setsampwidth(config.SAMPLE_WIDTH)
            self._wav.setframerate(self.sample_rate)
        except (OSError, wave.Error) as e:
            self._close_file()
            err = RecordingError(f"cannot create {self.handle.path}: {e}")
            self.handle.error = err
            raise err from e

        self._last_flush = time.monotonic()
        self._thread = threading.Thread(
            target=self._writer, name="recorder", daemon=True
        )
        self._thread.start()
        logger.info("Recording to %s", self.handle.path)
        return self.handle

    def append(self, frame: AudioFrame) -> None:
        """Queue a frame for writing. Never blocks."""
        if self.handle.finalized:
            return
        self._queue.put(frame)

    def _writer(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self.flush_interval_s)
            except queue.Empty:
                self._flush()
                continue

            if item is _STOP:
                self._flush()
                return

            self._accept(item)
            if time.monotonic() - self._last_flush >= self.flush_interval_s:
                self._flush()

    def _accept(self, frame: AudioFrame) -> None:
        h = self.handle
        if h.last_index is not None and frame.index != h.last_index + 1:
            h.gaps += 1
            logger.warning(
                "Recorder saw frame %d after %d", frame.index, h.last_index
            )
        if h.first_index is None:
            h.first_index = frame.index
        h.last_index = frame.index
        if h.error is None:
            self._pending.extend(frame.pcm16())
        h.frames_written += 1
        h.samples_written += frame.num_samples

    def _flush(self) -> None:
        self._last_flush = time.monotonic()
        if not self._pending or self.handle.error is not None or self._wav is None:
            return
        try:
            self._wav.writeframes(bytes(self._pending))
            self._file.flush()
        except (OSError, wave.Error) as e:
            self._fail(e)
        finally:
            self._pending.clear()

    def _fail(self, e: Exception) -> None:
        err = RecordingError(f"write to {self.handle.path} failed: {e}")
        self.handle.error = err
        logger.warning("%s", err)
        if self.on_error:
            self.on_error(err)

    def _close_file(self) -> None:
        try:
            if self._wav is not None:
                self._wav.close()
            if self._file is not None:
                self._file.close()
        except (OSError, wave.Error) as e:
            if self.handle.error is None:
                self._fail(e)
        finally:
            self._wav = None
            self._file = None

    def finalize(self) -> RecordingArtifact:
        """Drain queued frames, close the file and describe the result."""
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join()
            self._thread = None
        self._close_file()
        self.handle.finalized = True

        h = self.handle
        artifact = RecordingArtifact(
            path=h.path,
            sample_rate=h.sample_rate,
            num_samples=h.samples_written,
            frames=h.frames_written,
            complete=h.error is None and h.gaps == 0,
        )
        logger.info(
            "Recording finalized: %s (%.1fs%s)",
            h.path,
            artifact.duration_s,
            "" if artifact.complete else ", incomplete",
        )
        return artifact
