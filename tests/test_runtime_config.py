import pytest

from livescribe.core.runtime_config import (
    BufferingMode,
    ConfigStore,
    SessionConfig,
    VadStrictness,
)


def test_defaults() -> None:
    cfg = SessionConfig()
    assert cfg.buffering_mode is BufferingMode.CONTINUOUS
    assert cfg.vad_strictness is VadStrictness.FLEXIBLE
    assert cfg.effective_overlap_ms == 1000
    assert cfg.preferred_backend == "cuda-fp16"


def test_strings_are_coerced() -> None:
    cfg = SessionConfig(buffering_mode="buffered", vad_strictness="strict")
    assert cfg.buffering_mode is BufferingMode.BUFFERED
    assert cfg.effective_overlap_ms == 500


def test_explicit_overlap_wins() -> None:
    assert SessionConfig(overlap_ms=250).effective_overlap_ms == 250


@pytest.mark.parametrize(
    "kwargs",
    [
        {"buffering_mode": "sometimes"},
        {"vad_aggressiveness": 4},
        {"buffer_ms": 0},
        {"overlap_ms": -1},
    ],
)
def test_invalid_values_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        SessionConfig(**kwargs)


def test_store_update_notifies_and_ignores_unknown() -> None:
    store = ConfigStore()
    seen = []
    store.add_listener(seen.append)
    new = store.update(buffer_ms=6000, not_a_field=1)
    assert new.buffer_ms == 6000
    assert store.get() is new
    assert seen == [new]

    store.remove_listener(seen.append)
    store.update(buffer_ms=3000)
    assert len(seen) == 1


def test_session_copy_is_not_affected_by_later_updates() -> None:
    store = ConfigStore()
    taken = store.get()
    store.update(vad_strictness="strict")
    assert taken.vad_strictness is VadStrictness.FLEXIBLE


def test_failing_listener_does_not_block_update() -> None:
    store = ConfigStore()

    def broken(_cfg):
        raise RuntimeError("listener bug")

    store.add_listener(broken)
    assert store.update(silence_flush_ms=1500).silence_flush_ms == 1500
