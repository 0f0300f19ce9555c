"""
Transcript stabilization.

Consecutive windows overlap, so their texts repeat words at the seam. Each
new result is aligned against the tail of the transcript with a bounded
longest-common-run search; only what follows the alignment point is
appended. Provisional text can still be rewritten by newer results,
committed text never changes.
"""

import math
import re
from dataclasses import dataclass, replace
from enum import Enum

from . import config
from .backend import InferenceResult, Token
from ..utils import get_logger

logger = get_logger(__name__)

_NON_WORD = re.compile(r"[^\w']+")


class SegmentState(str, Enum):
    PROVISIONAL = "provisional"
    COMMITTED = "committed"


@dataclass(frozen=True)
class Segment:
    index: int
    tokens: tuple[Token, ...]
    state: SegmentState
    start_s: float
    end_s: float
    sequence: int
    ambiguous: bool = False

    @property
    def text(self) -> str:
        return " ".join(t.text for t in self.tokens if t.text)

    @property
    def committed(self) -> bool:
        return self.state is SegmentState.COMMITTED


@dataclass(frozen=True)
class TranscriptUpdate:
    """Append/replace feed entry for transcript consumers."""

    sequence: int
    appended: tuple[Segment, ...] = ()
    replaced: tuple[Segment, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.appended and not self.replaced


class Transcript:
    """Ordered segments; committed ones are frozen."""

    def __init__(self):
        self._segments: list[Segment] = []

    def __len__(self) -> int:
        return len(self._segments)

    def __getitem__(self, index: int) -> Segment:
        return self._segments[index]

    def snapshot(self) -> tuple[Segment, ...]:
        return tuple(self._segments)

    def text(self, include_provisional: bool = True) -> str:
        parts = [
            s.text
            for s in self._segments
            if s.text and (include_provisional or s.committed)
        ]
        return " ".join(parts)

    def append(self, segment: Segment) -> None:
        if segment.index != len(self._segments):
            raise ValueError(f"segment index {segment.index} out of order")
        self._segments.append(segment)

    def replace(self, segment: Segment) -> None:
        current = self._segments[segment.index]
        if current.committed:
            raise RuntimeError(f"segment {segment.index} is committed")
        self._segments[segment.index] = segment


def normalize(text: str) -> str:
    """Comparison form of a token: lower case, no punctuation."""
    return _NON_WORD.sub("", text.lower())


@dataclass(frozen=True)
class _TailToken:
    segment: int
    position: int
    token: Token
    committed: bool


@dataclass(frozen=True)
class Alignment:
    """Longest common run: tail[tail_start:+length] == lead[lead_start:+length]."""

    tail_start: int
    lead_start: int
    length: int


def longest_common_run(tail: list[str], lead: list[str]) -> Alignment:
    """
    Longest contiguous run of equal tokens between two short sequences.

    Ties go to the run ending closest to the end of `tail`, then to the
    earliest run in `lead`. Empty strings never match.
    """
    best = Alignment(0, 0, 0)
    best_end = -1
    prev = [0] * (len(lead) + 1)
    for i in range(1, len(tail) + 1):
        cur = [0] * (len(lead) + 1)
        for j in range(1, len(lead) + 1):
            if tail[i - 1] and tail[i - 1] == lead[j - 1]:
                cur[j] = prev[j - 1] + 1
                k = cur[j]
                start_j = j - k
                if k > best.length or (
                    k == best.length
                    and (i > best_end or (i == best_end and start_j < best.lead_start))
                ):
                    best = Alignment(i - k, start_j, k)
                    best_end = i
        prev = cur
    return best


class TranscriptStabilizer:
    """
    Merges overlapping inference results into one growing transcript.

    Args:
        overlap_ms: configured window overlap; bounds the alignment search
            and sets how far behind a segment must be before it is committed
    """

    def __init__(
        self,
        overlap_ms: int = config.CONTINUOUS_OVERLAP_MS,
        min_confident_run: int = config.MIN_CONFIDENT_RUN,
    ):
        self.overlap_s = overlap_ms / 1000.0
        self.min_confident_run = min_confident_run
        self.max_tokens = max(
            config.MIN_ALIGN_TOKENS,
            math.ceil(self.overlap_s * config.MAX_WORDS_PER_SECOND) + 2,
        )
        self.transcript = Transcript()
        self._last_sequence = -1

    # ------------------------------------------------------------------
    # Windows of the search
    # ------------------------------------------------------------------
    def _tail(self, window_start: float) -> list[_TailToken]:
        tail: list[_TailToken] = []
        horizon = window_start - config.ALIGN_SLACK_S
        for seg in reversed(self.transcript.snapshot()):
            for pos in range(len(seg.tokens) - 1, -1, -1):
                token = seg.tokens[pos]
                if len(tail) >= self.max_tokens:
                    return tail[::-1]
                if token.end is not None and token.end < horizon:
                    return tail[::-1]
                tail.append(_TailToken(seg.index, pos, token, seg.committed))
        return tail[::-1]

    def _lead(self, result: InferenceResult) -> list[Token]:
        limit = result.start_s + self.overlap_s + config.ALIGN_SLACK_S
        lead: list[Token] = []
        for token in result.tokens[: self.max_tokens]:
            if token.start is not None and token.start > limit:
                break
            lead.append(token)
        return lead

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------
    def _truncate(self, tail: list[_TailToken], cut: int) -> list[Segment] | None:
        """Drop tail[cut:] from the transcript. None if it would touch committed text."""
        removed = tail[cut:]
        if not removed:
            return []
        if any(t.committed for t in removed):
            return None

        first = removed[0]
        changed: list[Segment] = []
        for seg in self.transcript.snapshot()[first.segment :]:
            keep = first.position if seg.index == first.segment else 0
            if keep == len(seg.tokens):
                continue
            tokens = seg.tokens[:keep]
            end_s = seg.end_s
            if tokens and tokens[-1].end is not None:
                end_s = tokens[-1].end
            updated = replace(seg, tokens=tokens, end_s=end_s)
            self.transcript.replace(updated)
            changed.append(updated)
        return changed

    def update(self, result: InferenceResult) -> TranscriptUpdate:
        """
        Merge one result.

        Args:
            result: next result; sequence numbers must increase

        Returns:
            Segments appended and replaced by this result
        """
        if result.sequence <= self._last_sequence:
            raise ValueError(
                f"result {result.sequence} arrived after {self._last_sequence}"
            )
        self._last_sequence = result.sequence

        tokens = list(result.tokens)
        changed: dict[int, Segment] = {}
        ambiguous = False
        new_from = 0

        tail = self._tail(result.start_s) if result.overlap_s > 0 else []
        lead = self._lead(result) if tail else []
        if tail and lead:
            align = longest_common_run(
                [normalize(t.token.text) for t in tail],
                [normalize(t.text) for t in lead],
            )
            ambiguous = align.length < self.min_confident_run
            after_tail = align.tail_start + align.length
            after_lead = align.lead_start + align.length
            at_seam = after_tail == len(tail) and align.lead_start == 0

            spliced = None
            if not ambiguous:
                spliced = self._truncate(tail, after_tail)
                new_from = after_lead
            elif align.length and at_seam:
                # Single repeated word at the seam: the newer token replaces it
                spliced = self._truncate(tail, align.tail_start)
                new_from = 0 if spliced is not None else after_lead
            for seg in spliced or []:
                changed[seg.index] = seg

            if align.length == 0:
                logger.debug("Result %d: no overlap alignment", result.sequence)
            elif ambiguous:
                logger.debug(
                    "Result %d: ambiguous alignment on %r",
                    result.sequence,
                    lead[align.lead_start].text,
                )

        new_tokens = tuple(tokens[new_from:])
        start_s = result.start_s
        end_s = result.end_s
        if new_tokens and new_tokens[0].start is not None:
            start_s = new_tokens[0].start
        if new_tokens and new_tokens[-1].end is not None:
            end_s = new_tokens[-1].end

        segment = Segment(
            index=len(self.transcript),
            tokens=new_tokens,
            state=SegmentState.PROVISIONAL,
            start_s=start_s,
            end_s=end_s,
            sequence=result.sequence,
            ambiguous=ambiguous,
        )
        self.transcript.append(segment)

        for seg in self._promote(result.start_s):
            changed[seg.index] = seg

        return TranscriptUpdate(
            sequence=result.sequence,
            appended=(self.transcript[segment.index],),
            replaced=tuple(
                seg for idx, seg in sorted(changed.items()) if idx != segment.index
            ),
        )

    def _promote(self, window_start: float) -> list[Segment]:
        promoted: list[Segment] = []
        for seg in self.transcript.snapshot():
            if seg.committed:
                continue
            if seg.end_s + self.overlap_s > window_start:
                break
            committed = replace(seg, state=SegmentState.COMMITTED)
            self.transcript.replace(committed)
            promoted.append(committed)
        return promoted

    def finalize(self) -> TranscriptUpdate:
        """Commit every provisional segment in its last-known form."""
        promoted = []
        for seg in self.transcript.snapshot():
            if not seg.committed:
                committed = replace(seg, state=SegmentState.COMMITTED)
                self.transcript.replace(committed)
                promoted.append(committed)
        return TranscriptUpdate(sequence=self._last_sequence, replaced=tuple(promoted))
