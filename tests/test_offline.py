from livescribe.core.backend import InferenceBackend
from livescribe.core.offline import transcribe_recording
from livescribe.core.recorder import ParallelRecorder
from livescribe.core.vad import EnergyDetector, VoiceActivityGate

from conftest import FakeRuntime, make_frames


def _record(tmp_path, pattern: str):
    recorder = ParallelRecorder(directory=str(tmp_path))
    recorder.start()
    for frame in make_frames(pattern):
        recorder.append(frame)
    return recorder.finalize()


def test_whole_recording_in_one_pass(tmp_path, model_handle) -> None:
    artifact = _record(tmp_path, "." * 20 + "s" * 30 + "." * 20)
    runtime = FakeRuntime()
    backend = InferenceBackend(runtime, model_handle)
    backend.select()

    transcript = transcribe_recording(artifact, backend)

    assert runtime.calls == [("cuda-fp16", artifact.num_samples)]
    assert len(transcript) == 1
    assert transcript[0].committed
    assert transcript.text() == "w1"


def test_gate_trims_surrounding_silence(tmp_path, model_handle) -> None:
    artifact = _record(tmp_path, "." * 20 + "s" * 30 + "." * 20)
    runtime = FakeRuntime()
    backend = InferenceBackend(runtime, model_handle)

    gate = VoiceActivityGate(EnergyDetector(), context_ms=20)
    transcribe_recording(artifact.path, backend, gate=gate)

    assert runtime.calls[0][1] == 30 * 320


def test_silent_recording_skips_inference(tmp_path, model_handle) -> None:
    artifact = _record(tmp_path, "." * 30)
    runtime = FakeRuntime()
    gate = VoiceActivityGate(EnergyDetector(), context_ms=20)

    transcript = transcribe_recording(artifact, InferenceBackend(runtime, model_handle), gate=gate)

    assert runtime.calls == []
    assert len(transcript) == 0


def test_fallback_chain_applies_offline(tmp_path, model_handle, flaky_fp16) -> None:
    artifact = _record(tmp_path, "s" * 30)
    backend = InferenceBackend(flaky_fp16, model_handle)
    transcript = transcribe_recording(artifact, backend)
    assert backend.state.device == "cuda"
    assert transcript.text() == "w2"
