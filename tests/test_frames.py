import numpy as np
import pytest

from livescribe.core.errors import DeviceError
from livescribe.core.frames import (
    FrameSequencer,
    SequenceChecker,
    float_to_pcm16,
    frame_generator,
    frame_samples,
    pcm16_to_float,
)


def test_frame_samples_20ms_at_16k() -> None:
    assert frame_samples(20, 16000) == 320


def test_pcm_conversion_keeps_scale() -> None:
    samples = np.array([0.0, 0.5, -0.5, 1.0], dtype=np.float32)
    back = pcm16_to_float(float_to_pcm16(samples))
    assert np.allclose(back, samples, atol=1e-4)


def test_float_to_pcm16_clips() -> None:
    raw = float_to_pcm16(np.array([2.0, -2.0], dtype=np.float32))
    assert list(np.frombuffer(raw, dtype=np.int16)) == [32767, -32767]


def test_frame_generator_drops_partial_tail() -> None:
    audio = bytes(320 * 2 * 3 + 10)
    chunks = list(frame_generator(20, audio, 16000))
    assert len(chunks) == 3
    assert all(len(c) == 640 for c in chunks)


def test_sequencer_assigns_gapless_indices_and_offsets() -> None:
    seq = FrameSequencer(16000)
    a = seq.make(np.zeros(320, dtype=np.float32), 1.0)
    b = seq.make(np.zeros(320, dtype=np.float32), 1.02)
    assert (a.index, b.index) == (0, 1)
    assert (a.start_sample, b.start_sample) == (0, 320)
    assert b.start_s == pytest.approx(0.02)
    assert a.duration_ms == pytest.approx(20.0)


def test_frame_samples_are_read_only() -> None:
    frame = FrameSequencer().make(np.zeros(320, dtype=np.float32), 0.0)
    with pytest.raises(ValueError):
        frame.samples[0] = 1.0


def test_with_samples_keeps_position() -> None:
    seq = FrameSequencer()
    seq.make(np.zeros(320, dtype=np.float32), 0.0)
    frame = seq.make(np.zeros(320, dtype=np.float32), 0.0)
    other = frame.with_samples(np.ones(320, dtype=np.float32))
    assert other.index == frame.index
    assert other.start_sample == frame.start_sample
    assert other.samples[0] == 1.0


def test_sequence_checker_detects_gap() -> None:
    seq = FrameSequencer()
    checker = SequenceChecker()
    checker.check(seq.make(np.zeros(320, dtype=np.float32), 0.0))
    seq.make(np.zeros(320, dtype=np.float32), 0.0)
    with pytest.raises(DeviceError):
        checker.check(seq.make(np.zeros(320, dtype=np.float32), 0.0))
