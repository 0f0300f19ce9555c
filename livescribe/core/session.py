"""
Session controller - composes capture -> VAD -> windowing -> inference ->
stabilization, with the recorder tapping capture.

Stages run as worker threads connected by bounded queues:

- capture worker: source frames -> recorder + frame queue
- windowing worker: conditioning, VAD tags, WindowScheduler -> window queue
- inference worker: InferenceBackend -> TranscriptStabilizer -> consumers

Completed windows are acknowledged back to the windowing worker through a
queue, so only one window is ever in flight.
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Protocol

from . import config
from .backend import BackendState, InferenceBackend, InferenceRuntime, ModelHandle
from .dsp import AudioGain, DCBlock
from .errors import (
    BackendFatalError,
    CorruptModelError,
    DeviceError,
    LiveScribeError,
    RecordingError,
)
from .frames import AudioFrame, SequenceChecker
from .recorder import ParallelRecorder, RecordingArtifact, prune_recordings
from .runtime_config import SessionConfig
from .scheduler import WindowScheduler
from .stabilizer import Segment, TranscriptStabilizer, TranscriptUpdate
from .vad import VoiceActivityGate, build_gate
from ..utils import get_logger

logger = get_logger(__name__)

_END = object()


class FrameSource(Protocol):
    def frames(self) -> Iterator[AudioFrame]: ...

    def close(self) -> None: ...


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SessionOutcome:
    state: SessionState
    transcript: tuple[Segment, ...] = ()
    error: LiveScribeError | None = None
    stage: str | None = None
    backend_state: BackendState | None = None
    recording: RecordingArtifact | None = None
    diagnostics: tuple[str, ...] = ()
    message: str = ""

    @property
    def text(self) -> str:
        return " ".join(s.text for s in self.transcript if s.text)


class SessionController:
    """
    One transcription session: Idle -> Running -> {Completed, Aborted}.

    Args:
        session_config: configuration copy for this session
        runtime: inference runtime behind the backend chain
        source_factory: creates the frame source once the model is valid
        recorder_factory: creates the parallel recorder (None disables recording)
        gate_factory: creates the VAD gate (defaults to the configured detector)
        on_update: receives transcript append/replace updates
        on_state_change: receives session state transitions
    """

    def __init__(
        self,
        session_config: SessionConfig,
        runtime: InferenceRuntime,
        source_factory: Callable[[], FrameSource],
        recorder_factory: Callable[..., ParallelRecorder] | None = ParallelRecorder,
        gate_factory: Callable[[SessionConfig], VoiceActivityGate] = build_gate,
        on_update: Callable[[TranscriptUpdate], None] | None = None,
        on_state_change: Callable[[SessionState], None] | None = None,
    ):
        self.config = session_config
        self.runtime = runtime
        self.source_factory = source_factory
        self.recorder_factory = recorder_factory
        self.gate_factory = gate_factory
        self.on_update = on_update
        self.on_state_change = on_state_change

        self._state = SessionState.IDLE
        self._lock = threading.RLock()
        self._stop_requested = threading.Event()
        self._abort = threading.Event()
        self._finished = threading.Event()

        self._frames: queue.Queue = queue.Queue(maxsize=config.FRAME_QUEUE_MAX)
        self._windows: queue.Queue = queue.Queue(maxsize=config.WINDOW_QUEUE_MAX)
        self._done: queue.Queue[int] = queue.Queue()

        self._source: FrameSource | None = None
        self._recorder: ParallelRecorder | None = None
        self._backend: InferenceBackend | None = None
        self._stabilizer = TranscriptStabilizer(
            overlap_ms=session_config.effective_overlap_ms
        )
        self._threads: list[threading.Thread] = []

        self._error: LiveScribeError | None = None
        self._recording: RecordingArtifact | None = None
        self._diagnostics: list[str] = []
        self._message = ""

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def backend_state(self) -> BackendState | None:
        return self._backend.state if self._backend else None

    @property
    def diagnostics(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._diagnostics)

    def snapshot(self) -> tuple[Segment, ...]:
        with self._lock:
            return self._stabilizer.transcript.snapshot()

    def text(self, include_provisional: bool = True) -> str:
        with self._lock:
            return self._stabilizer.transcript.text(include_provisional)

    @property
    def outcome(self) -> SessionOutcome:
        with self._lock:
            return SessionOutcome(
                state=self._state,
                transcript=self._stabilizer.transcript.snapshot(),
                error=self._error,
                stage=self._error.stage if self._error else None,
                backend_state=self.backend_state,
                recording=self._recording,
                diagnostics=tuple(self._diagnostics),
                message=self._message,
            )

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.info("Session %s", state.value)
        if self.on_state_change:
            self.on_state_change(state)

    def _diagnose(self, message: str) -> None:
        with self._lock:
            self._diagnostics.append(message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, model_loader: Callable[[], ModelHandle]) -> SessionState:
        """
        Validate the model and start all stages.

        A corrupt model ends the session before any source or recorder exists.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"session already {self._state.value}")

        try:
            model = model_loader()
        except CorruptModelError as e:
            logger.error("Model rejected: %s", e)
            with self._lock:
                self._error = e
                self._message = "Model failed validation; nothing was recorded."
                self._set_state(SessionState.ABORTED)
            self._finished.set()
            return self._state

        self._backend = InferenceBackend(
            self.runtime,
            model,
            preferred=self.config.preferred_backend,
            fallback=self.config.fallback_backend,
            on_state_change=self._on_backend_state,
        )
        self._backend.select()

        if self.recorder_factory is not None:
            self._recorder = self.recorder_factory(
                directory=self.config.recordings_dir,
                on_error=self._on_recording_error,
            )
            try:
                self._recorder.start()
            except RecordingError as e:
                self._on_recording_error(e)
                self._recorder = None

        with self._lock:
            self._set_state(SessionState.RUNNING)

        try:
            self._source = self.source_factory()
        except DeviceError as e:
            self._fail(e)
            return self._state

        for name, target in (
            ("capture", self._capture_worker),
            ("windowing", self._windowing_worker),
            ("inference", self._inference_worker),
        ):
            t = threading.Thread(target=target, name=name, daemon=True)
            t.start()
            self._threads.append(t)
        return self._state

    def stop(self) -> None:
        """Stop accepting audio; in-flight and queued windows still finish."""
        if self._state is not SessionState.RUNNING:
            return
        self._stop_requested.set()
        if self._source is not None:
            self._source.close()

    def wait(self, timeout: float | None = None) -> SessionOutcome:
        """Block until the session has completed or aborted."""
        self._finished.wait(timeout)
        if self._finished.is_set():
            for t in self._threads:
                if t is not threading.current_thread():
                    t.join(timeout=1.0)
        return self.outcome

    def run(self, model_loader: Callable[[], ModelHandle]) -> SessionOutcome:
        """Start and wait; for finite sources such as files."""
        self.start(model_loader)
        return self.wait()

    # ------------------------------------------------------------------
    # Error routing
    # ------------------------------------------------------------------
    def _on_backend_state(self, state: BackendState) -> None:
        if not state.warmed_up:
            self._diagnose(f"inference backend switched to {state.device}")

    def _on_recording_error(self, error: RecordingError) -> None:
        logger.warning("Recording problem: %s", error)
        self._diagnose(str(error))

    def _fail(self, error: LiveScribeError) -> None:
        """Abort: skip draining, keep the recording."""
        with self._lock:
            if self._state is not SessionState.RUNNING or self._abort.is_set():
                return
            self._abort.set()
            if error.backend_state is None and self._backend is not None:
                error.backend_state = self._backend.state
            self._error = error
        logger.error("Session aborted by %s", error)

        if self._source is not None:
            self._source.close()
        recording = self._finalize_recording()
        with self._lock:
            if recording is not None:
                self._message = (
                    "Live transcription stopped; recording available for offline "
                    "re-transcription."
                )
            else:
                self._message = "Live transcription stopped; no recording available."
            self._set_state(SessionState.ABORTED)
        self._finished.set()

    def _complete(self) -> None:
        recording = self._finalize_recording()
        with self._lock:
            if self._abort.is_set():
                return
            if recording is not None and recording.complete:
                self._message = (
                    "Finished real-time transcription! Recording available for "
                    "offline re-transcription."
                )
            else:
                self._message = (
                    "Finished real-time transcription! Recording unavailable for "
                    "offline re-transcription."
                )
            self._set_state(SessionState.COMPLETED)
        self._finished.set()

    def _finalize_recording(self) -> RecordingArtifact | None:
        with self._lock:
            recorder, self._recorder = self._recorder, None
        if recorder is None:
            return None
        artifact = recorder.finalize()
        if recorder.handle.error is not None:
            artifact = None if artifact.frames == 0 else artifact
        with self._lock:
            self._recording = artifact
        try:
            prune_recordings(self.config.recordings_dir, keep=self.config.recording_cache_size)
        except OSError as e:
            logger.warning("Could not prune old recordings: %s", e)
        return artifact

    def _put(self, q: queue.Queue, item) -> bool:
        """Blocking put that gives up when the session aborts."""
        while not self._abort.is_set():
            try:
                q.put(item, timeout=config.QUEUE_POLL_S)
                return True
            except queue.Full:
                continue
        return False

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    def _capture_worker(self) -> None:
        checker = SequenceChecker()
        recorder = self._recorder
        try:
            for frame in self._source.frames():
                if self._abort.is_set():
                    return
                if recorder is not None:
                    recorder.append(frame)
                checker.check(frame)
                if not self._put(self._frames, frame):
                    return
                if self._stop_requested.is_set():
                    break
        except DeviceError as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Capture worker crashed")
            self._fail(DeviceError(f"capture failed: {e}"))
            return
        self._put(self._frames, _END)

    def _windowing_worker(self) -> None:
        gate = self.gate_factory(self.config)
        scheduler = WindowScheduler.from_config(self.config)
        dc_block = DCBlock() if self.config.dc_block else None
        gain = AudioGain(self.config.input_gain_db)

        def dispatch() -> None:
            while True:
                try:
                    scheduler.complete(self._done.get_nowait())
                except queue.Empty:
                    break
            window = scheduler.next_window()
            if window is not None:
                self._put(self._windows, window)

        try:
            while not self._abort.is_set():
                dispatch()
                try:
                    frame = self._frames.get(timeout=config.QUEUE_POLL_S)
                except queue.Empty:
                    continue
                if frame is _END:
                    break

                samples = frame.samples
                if dc_block is not None:
                    samples = dc_block.process(samples)
                samples = gain.apply(samples)
                if samples is not frame.samples:
                    frame = frame.with_samples(samples)
                scheduler.push(frame, gate.tag(frame))
            else:
                return

            scheduler.finish()
            while scheduler.pending and not self._abort.is_set():
                dispatch()
                if scheduler.in_flight is not None:
                    try:
                        scheduler.complete(self._done.get(timeout=config.QUEUE_POLL_S))
                    except queue.Empty:
                        continue
        except LiveScribeError as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Windowing worker crashed")
            self._fail(LiveScribeError(f"windowing failed: {e}", stage="windowing"))
            return
        self._put(self._windows, _END)

    def _inference_worker(self) -> None:
        try:
            while not self._abort.is_set():
                try:
                    window = self._windows.get(timeout=config.QUEUE_POLL_S)
                except queue.Empty:
                    continue
                if window is _END:
                    break

                result = self._backend.infer(window)
                with self._lock:
                    if self._abort.is_set():
                        return
                    update = self._stabilizer.update(result)
                self._publish(update)
                self._done.put(window.index)
            else:
                return

            with self._lock:
                update = self._stabilizer.finalize()
            self._publish(update)
        except (BackendFatalError, CorruptModelError) as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Inference worker crashed")
            self._fail(LiveScribeError(f"inference failed: {e}", stage="inference"))
            return
        self._complete()

    def _publish(self, update: TranscriptUpdate) -> None:
        if self.on_update is None or update.empty:
            return
        try:
            self.on_update(update)
        except Exception:
            logger.exception("Transcript consumer failed")
