"""
Gradio UI for real-time speech transcription.
"""

import os
import threading
from datetime import datetime

import gradio as gr

from ..core import config
from ..core.asr import NemoRuntime, get_model
from ..core.backend import InferenceBackend
from ..core.errors import LiveScribeError
from ..core.offline import transcribe_recording
from ..core.recorder import (
    ExportFormat,
    ParallelRecorder,
    clear_recordings,
    export_recording,
    latest_recording,
)
from ..core.runtime_config import (
    BufferingMode,
    VadDetector,
    VadStrictness,
    get_config_store,
)
from ..core.session import SessionController, SessionState
from ..core.stabilizer import TranscriptUpdate
from ..core.vad import build_gate
from ..interfaces.microphone import MicrophoneSource
from ..interfaces.wav_file import WavFileSource
from ..utils import get_logger

logger = get_logger(__name__)

BUFFERING_CHOICES = [
    ("Continuous", "continuous"),
    (f"Buffered {config.SHORT_BUFFER_MS // 1000}s", config.SHORT_BUFFER_MS),
    (f"Buffered {config.LONG_BUFFER_MS // 1000}s", config.LONG_BUFFER_MS),
]


class STTApp:
    """Real-time transcription application with Gradio UI."""

    def __init__(self):
        self.store = get_config_store()
        self.runtime = NemoRuntime()

        self._session: SessionController | None = None
        self._feed: list[str] = []
        self._lock = threading.Lock()

        self.store.add_listener(self._on_config_change)

    def close(self) -> None:
        """Detach from the config store and stop any live session."""
        self.store.remove_listener(self._on_config_change)
        if self.is_recording:
            self._session.stop()

    @property
    def is_recording(self) -> bool:
        return self._session is not None and self._session.state is SessionState.RUNNING

    def _on_config_change(self, session_config) -> None:
        logger.debug("Config changed: %s", session_config)
        if self.is_recording:
            with self._lock:
                self._feed.append("Settings changed, they apply to the next session")

    def _on_update(self, update: TranscriptUpdate) -> None:
        """Keep a short log of what the stabilizer changed."""
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            for seg in update.replaced:
                self._feed.append(f"[{stamp}] ~{seg.index} {seg.state.value}: {seg.text}")
            for seg in update.appended:
                self._feed.append(f"[{stamp}] +{seg.index}: {seg.text}")
            del self._feed[:-200]

    def _new_session(self, source_factory, record: bool = True) -> SessionController:
        session_config = self.store.get()
        return SessionController(
            session_config,
            self.runtime,
            source_factory=source_factory,
            recorder_factory=ParallelRecorder if record else None,
            on_update=self._on_update,
        )

    def start_recording(self) -> str:
        """Start a live session from the microphone."""
        if self.is_recording:
            return "Already recording..."

        with self._lock:
            self._feed.clear()

        self._session = self._new_session(MicrophoneSource)
        model_name = self._session.config.model_name
        state = self._session.start(lambda: get_model(model_name))
        if state is SessionState.ABORTED:
            return self._session.outcome.message
        return "🎙️ Recording started..."

    def stop_recording(self) -> str:
        """Stop the live session and wait for the remaining windows."""
        if self._session is None:
            return "Not recording."
        self._session.stop()
        outcome = self._session.wait()
        return outcome.message or "⏹️ Recording stopped."

    def transcribe_file(self, path: str | None) -> str:
        """Run a WAV file through the live pipeline, without recording it."""
        if not path:
            return "No file selected."
        if self.is_recording:
            return "Stop the live session first."

        with self._lock:
            self._feed.clear()
        self._session = self._new_session(lambda: WavFileSource(path), record=False)
        model_name = self._session.config.model_name
        outcome = self._session.run(lambda: get_model(model_name))
        return outcome.text

    def retranscribe(self) -> str:
        """Transcribe the latest recording in one offline pass."""
        if self.is_recording:
            return "Stop the live session first."

        session_config = self.store.get()
        path = self._current_recording()
        if path is None:
            return "No recording available."

        try:
            backend = InferenceBackend(
                self.runtime,
                get_model(session_config.model_name),
                preferred=session_config.preferred_backend,
                fallback=session_config.fallback_backend,
            )
            backend.select()
            transcript = transcribe_recording(path, backend, gate=build_gate(session_config))
        except LiveScribeError as e:
            logger.error("Offline re-transcription failed: %s", e)
            return f"Re-transcription failed: {e}"

        return transcript.text()

    def _current_recording(self) -> str | None:
        outcome = self._session.outcome if self._session else None
        if outcome and outcome.recording:
            return outcome.recording.path
        return latest_recording(self.store.get().recordings_dir)

    def export(self, out_path: str, fmt: str = ExportFormat.FLOAT32.value) -> str:
        """Save the latest recording outside the cache."""
        if self.is_recording:
            return "Stop the live session first."
        if not out_path:
            return "No export path given."
        path = self._current_recording()
        if path is None:
            return "No recording available."
        try:
            written = export_recording(path, out_path, ExportFormat(fmt))
        except LiveScribeError as e:
            logger.error("Export failed: %s", e)
            return f"Export failed: {e}"
        return f"Exported to {written}"

    def clear_cache(self) -> str:
        """Delete every cached recording."""
        if self.is_recording:
            return "Stop the live session first."
        removed = clear_recordings(self.store.get().recordings_dir)
        return f"Removed {len(removed)} recording(s)"

    def get_transcript(self) -> str:
        if self._session is None:
            return ""
        segments = self._session.snapshot()
        committed = " ".join(s.text for s in segments if s.committed and s.text)
        provisional = " ".join(s.text for s in segments if not s.committed and s.text)
        if provisional:
            return f"{committed}\n\n… {provisional}".strip()
        return committed

    def get_feed(self) -> str:
        with self._lock:
            return "\n".join(self._feed[-30:])

    def get_status(self) -> str:
        """Get current session status."""
        if self._session is None:
            return "⚪ Stopped"
        if self.is_recording:
            backend = self._session.backend_state
            device = f" on {backend.device}" if backend else ""
            return f"🔴 Recording{device}..."
        outcome = self._session.outcome
        if outcome.state is SessionState.ABORTED:
            return f"❌ {outcome.error}" if outcome.error else "❌ Aborted"
        if outcome.state is SessionState.COMPLETED:
            return f"✅ {outcome.message}"
        return "⚪ Stopped"

    def update_buffering(self, value) -> str:
        if value == BufferingMode.CONTINUOUS.value:
            self.store.update(buffering_mode=BufferingMode.CONTINUOUS)
            return "Buffering: continuous"
        self.store.update(buffering_mode=BufferingMode.BUFFERED, buffer_ms=int(value))
        return f"Buffering: {int(value)}ms"

    def update_vad_strictness(self, value: str) -> str:
        self.store.update(vad_strictness=VadStrictness(value))
        return f"VAD strictness: {value}"

    def update_vad_detector(self, value: str) -> str:
        self.store.update(vad_detector=VadDetector(value))
        return f"VAD detector: {value}"

    def update_vad_aggressiveness(self, value: int) -> str:
        self.store.update(vad_aggressiveness=int(value))
        return f"VAD aggressiveness: {value}"

    def update_gain(self, value: float) -> str:
        self.store.update(input_gain_db=float(value))
        return f"Input gain: {value} dB"

    def update_silence_flush(self, value: int) -> str:
        self.store.update(silence_flush_ms=int(value))
        return f"Silence flush: {value}ms"


def create_ui() -> gr.Blocks:
    """Create the Gradio UI."""
    app = STTApp()

    # Pre-load the model so the first session starts quickly
    model_name = app.store.get().model_name
    logger.info("Initializing ASR model...")
    try:
        get_model(model_name)
    except LiveScribeError as e:
        logger.error("Model preload failed: %s", e)
    else:
        logger.info("ASR model ready.")

    with gr.Blocks(title="LiveScribe") as demo:
        gr.Markdown("# 🎤 LiveScribe")
        gr.Markdown(
            "Real-time transcription with NVIDIA NeMo Parakeet TDT. "
            "Settings apply to the next session."
        )

        with gr.Row():
            status_text = gr.Textbox(
                label="Status",
                value="⚪ Stopped",
                interactive=False,
                lines=1,
                scale=2,
            )
            start_btn = gr.Button("🎙️ Start", variant="primary", size="lg")
            stop_btn = gr.Button("⏹️ Stop", variant="stop", size="lg")
            retranscribe_btn = gr.Button("🔁 Re-transcribe recording", size="lg")

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### 📝 Transcript")
                transcript_box = gr.Textbox(
                    label="Live transcript",
                    placeholder="Speak into your microphone...",
                    lines=12,
                    max_lines=20,
                    interactive=False,
                    autoscroll=True,
                )
                offline_box = gr.Textbox(
                    label="Offline transcript",
                    lines=6,
                    interactive=False,
                )

            with gr.Column(scale=1):
                gr.Markdown("### 🔎 Updates")
                feed_box = gr.Textbox(
                    label="Stabilizer feed",
                    lines=12,
                    max_lines=20,
                    interactive=False,
                    autoscroll=True,
                )
                file_input = gr.Audio(label="Transcribe a WAV file", type="filepath")
                file_btn = gr.Button("📄 Transcribe file")

                gr.Markdown("### 💾 Recordings")
                export_path = gr.Textbox(label="Export to", placeholder="~/take.wav")
                export_fmt = gr.Radio(
                    choices=[
                        ("32-bit float", ExportFormat.FLOAT32.value),
                        ("16-bit PCM", ExportFormat.INT16.value),
                    ],
                    value=ExportFormat.FLOAT32.value,
                    label="Format",
                )
                with gr.Row():
                    export_btn = gr.Button("Export recording")
                    clear_btn = gr.Button("Clear recordings", variant="stop")
                recordings_msg = gr.Textbox(show_label=False, interactive=False, lines=1)

        with gr.Accordion("⚙️ Settings", open=False):
            with gr.Row():
                with gr.Column(scale=1):
                    gr.Markdown("#### Buffering")
                    buffering_radio = gr.Radio(
                        choices=BUFFERING_CHOICES,
                        value="continuous",
                        label="Buffering mode",
                    )
                    silence_slider = gr.Slider(
                        minimum=500,
                        maximum=5000,
                        step=250,
                        value=config.SILENCE_FLUSH_MS,
                        label="Silence flush (ms)",
                        info="Silence that flushes buffered speech",
                    )
                    gain_slider = gr.Slider(
                        minimum=0,
                        maximum=config.MAX_INPUT_GAIN_DB,
                        step=1,
                        value=0,
                        label="Input gain (dB)",
                    )

                with gr.Column(scale=1):
                    gr.Markdown("#### VAD")
                    strictness_radio = gr.Radio(
                        choices=[s.value for s in VadStrictness],
                        value=VadStrictness.FLEXIBLE.value,
                        label="Strictness",
                        info="Strict drops uncertain frames, flexible keeps them",
                    )
                    detector_radio = gr.Radio(
                        choices=[d.value for d in VadDetector],
                        value=VadDetector.WEBRTC.value,
                        label="Detector",
                    )
                    vad_aggr_slider = gr.Slider(
                        minimum=0,
                        maximum=3,
                        step=1,
                        value=config.VAD_AGGRESSIVENESS,
                        label="VAD Aggressiveness",
                        info="0=least aggressive, 3=most aggressive at filtering non-speech",
                    )

            buffering_radio.change(fn=app.update_buffering, inputs=[buffering_radio])
            silence_slider.change(fn=app.update_silence_flush, inputs=[silence_slider])
            gain_slider.change(fn=app.update_gain, inputs=[gain_slider])
            strictness_radio.change(fn=app.update_vad_strictness, inputs=[strictness_radio])
            detector_radio.change(fn=app.update_vad_detector, inputs=[detector_radio])
            vad_aggr_slider.change(fn=app.update_vad_aggressiveness, inputs=[vad_aggr_slider])

        def on_start():
            msg = app.start_recording()
            return "", msg

        def on_stop():
            msg = app.stop_recording()
            return app.get_transcript(), msg

        def on_file(path):
            app.transcribe_file(path)
            return app.get_transcript(), app.get_status()

        start_btn.click(fn=on_start, outputs=[transcript_box, status_text])
        stop_btn.click(fn=on_stop, outputs=[transcript_box, status_text])
        retranscribe_btn.click(fn=app.retranscribe, outputs=[offline_box])
        file_btn.click(fn=on_file, inputs=[file_input], outputs=[transcript_box, status_text])

        def on_export(path, fmt):
            return app.export(os.path.expanduser(path or ""), fmt)

        export_btn.click(fn=on_export, inputs=[export_path, export_fmt], outputs=[recordings_msg])
        clear_btn.click(fn=app.clear_cache, outputs=[recordings_msg])

        def refresh_all():
            return app.get_transcript(), app.get_feed(), app.get_status()

        timer = gr.Timer(value=0.3, active=True)
        timer.tick(fn=refresh_all, outputs=[transcript_box, feed_box, status_text])

        demo.unload(app.close)

    return demo


def launch():
    """Launch the Gradio UI."""
    demo = create_ui()
    demo.launch(server_name="0.0.0.0", server_port=7860, share=False)
