"""
Offline re-transcription of a finished recording.

The whole recording goes through the backend as a single Final window, so
no overlap stabilization is involved.
"""

from ..interfaces.wav_file import WavFileSource
from . import config
from .backend import InferenceBackend
from .recorder import RecordingArtifact
from .scheduler import AudioWindow, WindowKind
from .stabilizer import Transcript, TranscriptStabilizer
from .vad import ActivityTag, VoiceActivityGate
from ..utils import get_logger

logger = get_logger(__name__)


def _speech_span(frames, gate: VoiceActivityGate):
    tags = [gate.tag(f) for f in frames]
    voiced = [i for i, tag in enumerate(tags) if tag is ActivityTag.SPEECH]
    if not voiced:
        return ()
    return frames[voiced[0] : voiced[-1] + 1]


def transcribe_recording(
    recording: RecordingArtifact | str,
    backend: InferenceBackend,
    gate: VoiceActivityGate | None = None,
    sample_rate: int = config.SAMPLE_RATE,
) -> Transcript:
    """
    Transcribe a recording in one pass.

    Args:
        recording: finalized recording or path to a WAV file
        backend: inference backend (its fallback chain applies as usual)
        gate: if given, leading and trailing non-speech is trimmed first

    Returns:
        Committed transcript
    """
    path = recording.path if isinstance(recording, RecordingArtifact) else recording
    source = WavFileSource(path, sample_rate=sample_rate)
    frames = tuple(source.frames())

    if gate is not None:
        frames = tuple(_speech_span(frames, gate))

    stabilizer = TranscriptStabilizer(overlap_ms=0)
    if not frames:
        logger.info("No audio to transcribe in %s", path)
        return stabilizer.transcript

    window = AudioWindow(index=0, kind=WindowKind.FINAL, frames=frames)
    logger.info("Re-transcribing %s (%.1fs)", path, window.duration_ms / 1000.0)
    stabilizer.update(backend.infer(window))
    stabilizer.finalize()
    return stabilizer.transcript
