"""
Pipeline error taxonomy.

Fatal errors end the live session (capture loss, CPU backend failure,
corrupt model). Backend errors on an accelerator are recoverable through the
fallback chain, and recording errors are reported but never stop the
transcript.
"""

from typing import Any


class LiveScribeError(Exception):
    """
    Base error.

    - stage: pipeline stage that raised it ("capture", "inference", ...)
    - backend_state: last known BackendState, when relevant
    """

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        backend_state: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage
        self.backend_state = backend_state

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class DeviceError(LiveScribeError):
    """Capture device could not be opened, dropped, or underran."""

    stage = "capture"


class BackendError(LiveScribeError):
    stage = "inference"


class BackendUnavailable(BackendError):
    """The requested hardware backend is not present on this machine."""


class BackendRuntimeError(BackendError):
    """The backend failed while running a window."""


class BackendFatalError(BackendError):
    """Every backend in the fallback chain, CPU included, has failed."""


class CorruptModelError(LiveScribeError):
    """The model failed integrity validation."""

    stage = "model"


class RecordingError(LiveScribeError):
    """Writing the raw recording failed."""

    stage = "recording"
