import numpy as np
import pytest

from livescribe.core import config
from livescribe.core.errors import DeviceError
from livescribe.interfaces import microphone
from livescribe.interfaces.microphone import MicrophoneSource


class _FakeStream:
    def __init__(self, callback):
        self.callback = callback
        self.active = True
        self.started = False
        self.stopped = False
        self.closed = False

    def start_stream(self) -> None:
        self.started = True

    def stop_stream(self) -> None:
        self.stopped = True
        self.active = False

    def close(self) -> None:
        self.closed = True

    def is_active(self) -> bool:
        return self.active


class _FakePyAudio:
    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.stream: _FakeStream | None = None
        self.open_kwargs: dict = {}
        self.terminated = False

    def open(self, **kwargs) -> _FakeStream:
        if self.fail is not None:
            raise self.fail
        self.open_kwargs = kwargs
        self.stream = _FakeStream(kwargs["stream_callback"])
        return self.stream

    def terminate(self) -> None:
        self.terminated = True


@pytest.fixture
def fake_pa(monkeypatch):
    pa = _FakePyAudio()
    monkeypatch.setattr(microphone.pyaudio, "PyAudio", lambda: pa)
    monkeypatch.setattr(config, "QUEUE_POLL_S", 0.01)
    return pa


def _chunk(value: int = 0, n: int = 320, channels: int = 1) -> bytes:
    return np.full(n * channels, value, dtype=np.int16).tobytes()


def _deliver(pa: _FakePyAudio, data: bytes, flags: int = 0):
    return pa.stream.callback(data, len(data) // 2, {}, flags)


def test_close_drains_captured_chunks(fake_pa) -> None:
    mic = MicrophoneSource()
    mic.start()
    assert fake_pa.stream.started
    assert fake_pa.open_kwargs["frames_per_buffer"] == 320

    for value in (100, 200, 300):
        assert _deliver(fake_pa, _chunk(value)) == (None, microphone.pyaudio.paContinue)
    mic.close()
    frames = list(mic.frames())

    assert [f.index for f in frames] == [0, 1, 2]
    assert [f.start_sample for f in frames] == [0, 320, 640]
    assert frames[2].samples[0] == pytest.approx(300 / 32768)
    assert fake_pa.stream.stopped
    assert fake_pa.terminated
    assert not mic.is_active()


def test_input_overflow_raises_device_error(fake_pa) -> None:
    mic = MicrophoneSource()
    mic.start()
    _deliver(fake_pa, _chunk(), flags=microphone.pyaudio.paInputOverflow)

    with pytest.raises(DeviceError, match="overflow"):
        next(mic.frames())
    assert fake_pa.terminated


def test_full_capture_queue_raises_device_error(fake_pa, monkeypatch) -> None:
    monkeypatch.setattr(config, "CAPTURE_QUEUE_MAX", 1)
    mic = MicrophoneSource()
    mic.start()
    _deliver(fake_pa, _chunk())
    _deliver(fake_pa, _chunk())

    with pytest.raises(DeviceError, match="1 chunk"):
        next(mic.frames())


def test_stalled_inactive_stream_raises_device_error(fake_pa, monkeypatch) -> None:
    monkeypatch.setattr(config, "DEVICE_STALL_S", 0.0)
    mic = MicrophoneSource()
    mic.start()
    fake_pa.stream.active = False

    with pytest.raises(DeviceError, match="stopped"):
        next(mic.frames())


def test_frames_yield_while_stream_runs(fake_pa) -> None:
    mic = MicrophoneSource()
    mic.start()
    _deliver(fake_pa, _chunk(50))

    gen = mic.frames()
    frame = next(gen)
    assert frame.index == 0
    assert frame.num_samples == 320
    assert mic.is_active()
    gen.close()
    assert fake_pa.terminated


def test_extra_channels_are_dropped(fake_pa) -> None:
    mic = MicrophoneSource(channels=2)
    mic.start()
    _deliver(fake_pa, _chunk(10, channels=2))
    mic.close()

    frames = list(mic.frames())
    assert len(frames) == 1
    assert frames[0].num_samples == 320


def test_open_failure_raises_device_error(monkeypatch) -> None:
    pa = _FakePyAudio(fail=OSError("Invalid input device"))
    monkeypatch.setattr(microphone.pyaudio, "PyAudio", lambda: pa)
    mic = MicrophoneSource()

    with pytest.raises(DeviceError, match="cannot open"):
        mic.start()
    assert pa.terminated
    assert not mic.is_active()
