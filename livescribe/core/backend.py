"""
Inference backend: runs windows through the model runtime and owns the
hardware fallback chain (Preferred -> Fallback -> CPU).

The runtime itself (model, kernels, devices) sits behind `InferenceRuntime`
so the chain can be exercised without any accelerator present.
"""

import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Protocol

import numpy as np

from . import config
from .errors import (
    BackendFatalError,
    BackendRuntimeError,
    BackendUnavailable,
    CorruptModelError,
)
from .scheduler import AudioWindow, WindowKind
from ..utils import get_logger

logger = get_logger(__name__)


class BackendKind(IntEnum):
    PREFERRED = 0
    FALLBACK = 1
    CPU = 2


@dataclass(frozen=True)
class BackendState:
    kind: BackendKind
    device: str
    warmed_up: bool = False


@dataclass(frozen=True)
class ModelHandle:
    """Opaque, already-validated model reference."""

    name: str
    model: Any = None


@dataclass(frozen=True)
class Token:
    text: str
    start: float | None = None
    end: float | None = None
    confidence: float = 1.0


@dataclass(frozen=True)
class InferenceResult:
    """Timestamped tokens for one window. Token times are session-absolute seconds."""

    sequence: int
    tokens: tuple[Token, ...]
    start_s: float
    end_s: float
    window_kind: WindowKind = WindowKind.OVERLAP
    overlap_s: float = 0.0
    backend: BackendState | None = None

    @property
    def text(self) -> str:
        return " ".join(t.text for t in self.tokens if t.text)

    @property
    def is_empty(self) -> bool:
        return not any(t.text for t in self.tokens)


class InferenceRuntime(Protocol):
    """Boundary to the model runtime."""

    def is_available(self, device: str) -> bool: ...

    def run(
        self, model: ModelHandle, pcm: np.ndarray, device: str, sample_rate: int
    ) -> list[Token]:
        """
        Transcribe one window.

        Token times are relative to the start of `pcm`. Raises
        BackendUnavailable, BackendRuntimeError or CorruptModelError.
        """
        ...


class InferenceBackend:
    """
    Runs windows on the best available backend, degrading on failure.

    Degradation is monotonic within a session: once on the fallback or CPU
    backend it never goes back.
    """

    def __init__(
        self,
        runtime: InferenceRuntime,
        model: ModelHandle,
        preferred: str = config.PREFERRED_BACKEND,
        fallback: str = config.FALLBACK_BACKEND,
        on_state_change: Callable[[BackendState], None] | None = None,
    ):
        self.runtime = runtime
        self.model = model
        self.on_state_change = on_state_change
        self._devices = {
            BackendKind.PREFERRED: preferred,
            BackendKind.FALLBACK: fallback,
            BackendKind.CPU: config.CPU_BACKEND,
        }
        self._state = BackendState(BackendKind.PREFERRED, preferred)
        self.history: list[BackendState] = [self._state]

    @property
    def state(self) -> BackendState:
        return self._state

    def _set_state(self, state: BackendState) -> None:
        if state.kind < self._state.kind:
            raise RuntimeError("backend state can only degrade")
        self._state = state
        self.history.append(state)
        if self.on_state_change:
            self.on_state_change(state)

    def select(self) -> BackendState:
        """Walk the chain from the current backend to the first available one."""
        while self._state.kind is not BackendKind.CPU:
            if self.runtime.is_available(self._state.device):
                break
            logger.warning("Backend %s unavailable, falling back", self._state.device)
            next_kind = BackendKind(self._state.kind + 1)
            self._set_state(BackendState(next_kind, self._devices[next_kind]))
        return self._state

    def degrade(self, reason: Exception) -> BackendState:
        """
        Step down one backend after a hard failure.

        Raises:
            BackendFatalError: if the CPU backend was the one that failed
        """
        if self._state.kind is BackendKind.CPU:
            raise BackendFatalError(
                f"CPU backend failed: {reason}", backend_state=self._state
            ) from reason

        next_kind = BackendKind(self._state.kind + 1)
        logger.warning(
            "Backend %s failed (%s), degrading to %s",
            self._state.device,
            reason,
            self._devices[next_kind],
        )
        self._set_state(BackendState(next_kind, self._devices[next_kind]))
        return self.select()

    def infer(self, window: AudioWindow) -> InferenceResult:
        """
        Transcribe a window, retrying the same window down the fallback chain.

        The result keeps the window's sequence number whatever backend ran it.
        """
        pcm = window.samples
        while True:
            state = self._state
            started = time.perf_counter()
            try:
                raw_tokens = self.runtime.run(
                    self.model, pcm, state.device, window.sample_rate
                )
            except (BackendUnavailable, BackendRuntimeError) as e:
                self.degrade(e)
                continue
            except CorruptModelError as e:
                e.backend_state = state
                raise

            if not state.warmed_up:
                logger.info(
                    "Backend %s warmed up (first window took %.2fs)",
                    state.device,
                    time.perf_counter() - started,
                )
                self._set_state(replace(state, warmed_up=True))
            return self._make_result(window, raw_tokens)

    def _make_result(self, window: AudioWindow, raw_tokens: list[Token]) -> InferenceResult:
        offset = window.start_s
        tokens = tuple(
            Token(
                text=t.text,
                start=None if t.start is None else t.start + offset,
                end=None if t.end is None else t.end + offset,
                confidence=t.confidence,
            )
            for t in raw_tokens
        )
        return InferenceResult(
            sequence=window.index,
            tokens=tokens,
            start_s=window.start_s,
            end_s=window.end_s,
            window_kind=window.kind,
            overlap_s=window.overlap_ms / 1000.0,
            backend=self._state,
        )
