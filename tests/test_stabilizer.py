import pytest

from livescribe.core.backend import InferenceResult, Token
from livescribe.core.stabilizer import (
    SegmentState,
    TranscriptStabilizer,
    longest_common_run,
    normalize,
)


def _result(sequence: int, start: float, end: float, words, overlap_s: float = 1.0) -> InferenceResult:
    tokens = tuple(Token(text, s, e) for text, s, e in words)
    return InferenceResult(
        sequence=sequence, tokens=tokens, start_s=start, end_s=end, overlap_s=overlap_s
    )


FIRST = _result(
    0,
    0.0,
    2.0,
    [("The", 0.0, 0.4), ("cat", 0.5, 0.9), ("sat", 1.1, 1.4), ("on", 1.5, 1.8)],
    overlap_s=0.0,
)
SECOND = _result(
    1,
    1.0,
    3.0,
    [("sat", 1.1, 1.4), ("on", 1.5, 1.8), ("the", 2.0, 2.2), ("mat.", 2.3, 2.7)],
)


def test_normalize_ignores_case_and_punctuation() -> None:
    assert normalize("Mat.") == "mat"
    assert normalize("don't") == "don't"


def test_longest_common_run_prefers_latest_tail_match() -> None:
    align = longest_common_run(["a", "b", "x", "a", "b"], ["a", "b", "c"])
    assert (align.tail_start, align.lead_start, align.length) == (3, 0, 2)


def test_longest_common_run_ignores_empty_tokens() -> None:
    assert longest_common_run(["", ""], ["", ""]).length == 0


def test_overlap_duplicates_are_merged() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    update = stabilizer.update(SECOND)

    assert stabilizer.transcript.text() == "The cat sat on the mat."
    assert update.appended[0].text == "the mat."
    assert update.appended[0].ambiguous is False
    assert update.replaced == ()


def test_provisional_tail_is_corrected() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(
        _result(
            0,
            0.0,
            2.0,
            [("the", 0.0, 0.4), ("cat", 0.5, 0.9), ("sat", 1.1, 1.4), ("on", 1.5, 1.8), ("a", 1.85, 1.95)],
            overlap_s=0.0,
        )
    )
    update = stabilizer.update(SECOND)

    assert stabilizer.transcript.text() == "the cat sat on the mat."
    assert update.replaced[0].index == 0
    assert update.replaced[0].text == "the cat sat on"


def test_segments_commit_once_behind_the_window() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    stabilizer.update(SECOND)
    assert not any(s.committed for s in stabilizer.transcript.snapshot())

    update = stabilizer.update(_result(2, 3.0, 5.0, [("and", 3.1, 3.3), ("slept", 3.4, 3.9)]))
    states = [s.state for s in stabilizer.transcript.snapshot()]
    assert states[0] is SegmentState.COMMITTED
    assert states[1] is SegmentState.PROVISIONAL
    assert [s.index for s in update.replaced] == [0]


def test_committed_text_never_changes() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    stabilizer.update(SECOND)
    stabilizer.update(_result(2, 3.0, 5.0, [("and", 3.1, 3.3), ("slept", 3.4, 3.9)]))
    committed = stabilizer.transcript.text(include_provisional=False)

    # Later windows that re-hear older words cannot rewrite committed text
    stabilizer.update(_result(3, 4.0, 6.0, [("cat", 4.1, 4.3), ("slept", 4.4, 4.9)]))
    stabilizer.update(_result(4, 9.0, 11.0, [("soundly", 9.1, 9.6)]))
    assert stabilizer.transcript.text(include_provisional=False).startswith(committed)

    with pytest.raises(RuntimeError):
        stabilizer.transcript.replace(stabilizer.transcript[0])


def test_single_word_at_seam_is_replaced_and_flagged() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    update = stabilizer.update(_result(1, 1.0, 3.0, [("On", 1.5, 1.8), ("a", 1.9, 2.0), ("mat", 2.1, 2.5)]))

    assert stabilizer.transcript.text() == "The cat sat On a mat"
    assert update.appended[0].ambiguous is True
    assert update.replaced[0].text == "The cat sat"


def test_no_alignment_appends_everything() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    update = stabilizer.update(_result(1, 1.0, 3.0, [("dog", 2.0, 2.3), ("ran", 2.4, 2.8)]))
    assert update.appended[0].text == "dog ran"
    assert update.appended[0].ambiguous is True
    assert stabilizer.transcript.text() == "The cat sat on dog ran"


def test_empty_result_becomes_empty_provisional_segment() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    update = stabilizer.update(_result(0, 0.0, 5.0, [], overlap_s=0.0))
    segment = update.appended[0]
    assert segment.tokens == ()
    assert segment.state is SegmentState.PROVISIONAL
    assert stabilizer.transcript.text() == ""


def test_results_must_arrive_in_order() -> None:
    stabilizer = TranscriptStabilizer()
    stabilizer.update(SECOND)
    with pytest.raises(ValueError):
        stabilizer.update(FIRST)


def test_finalize_commits_everything() -> None:
    stabilizer = TranscriptStabilizer(overlap_ms=1000)
    stabilizer.update(FIRST)
    stabilizer.update(SECOND)
    update = stabilizer.finalize()
    assert len(update.replaced) == 2
    assert all(s.committed for s in stabilizer.transcript.snapshot())
    assert stabilizer.transcript.text(include_provisional=False) == "The cat sat on the mat."
