"""
Session configuration.

`SessionConfig` is the plain-value configuration surface consumed by the
pipeline. A session takes its own copy at construction time; the
`ConfigStore` holds the editable copy that outlives sessions.
"""

import threading
from dataclasses import dataclass, replace, fields
from enum import Enum
from typing import Callable

from . import config
from ..utils import get_logger

logger = get_logger(__name__)


class BufferingMode(str, Enum):
    CONTINUOUS = "continuous"
    BUFFERED = "buffered"


class VadStrictness(str, Enum):
    FLEXIBLE = "flexible"
    STRICT = "strict"


class VadDetector(str, Enum):
    WEBRTC = "webrtc"
    ENERGY = "energy"


@dataclass(frozen=True)
class SessionConfig:
    """
    Configuration values for one transcription session.
    These can be changed between sessions, never during one.
    """

    # Window scheduling
    buffering_mode: BufferingMode = BufferingMode.CONTINUOUS
    buffer_ms: int = config.SHORT_BUFFER_MS
    overlap_ms: int | None = None
    silence_flush_ms: int = config.SILENCE_FLUSH_MS

    # VAD settings
    vad_detector: VadDetector = VadDetector.WEBRTC
    vad_strictness: VadStrictness = VadStrictness.FLEXIBLE
    vad_aggressiveness: int = config.VAD_AGGRESSIVENESS

    # Signal conditioning
    input_gain_db: float = 0.0
    dc_block: bool = True

    # Inference
    model_name: str = config.DEFAULT_MODEL
    preferred_backend: str = config.PREFERRED_BACKEND
    fallback_backend: str = config.FALLBACK_BACKEND

    # Recording
    recordings_dir: str = config.RECORDINGS_DIR
    recording_cache_size: int = config.RECORDING_CACHE_SIZE

    @property
    def effective_overlap_ms(self) -> int:
        """Overlap used by the scheduler, falling back to the per-mode default."""
        if self.overlap_ms is not None:
            return self.overlap_ms
        if self.buffering_mode is BufferingMode.CONTINUOUS:
            return config.CONTINUOUS_OVERLAP_MS
        return config.BUFFERED_OVERLAP_MS

    def __post_init__(self) -> None:
        # Accept plain strings for the enum fields (UI widgets hand those over)
        object.__setattr__(self, "buffering_mode", BufferingMode(self.buffering_mode))
        object.__setattr__(self, "vad_strictness", VadStrictness(self.vad_strictness))
        object.__setattr__(self, "vad_detector", VadDetector(self.vad_detector))
        if not 0 <= self.vad_aggressiveness <= 3:
            raise ValueError(f"vad_aggressiveness must be 0..3, got {self.vad_aggressiveness}")
        if self.buffer_ms <= 0 or self.silence_flush_ms <= 0:
            raise ValueError("buffer_ms and silence_flush_ms must be positive")
        if self.overlap_ms is not None and self.overlap_ms < 0:
            raise ValueError("overlap_ms must not be negative")


class ConfigStore:
    """
    Thread-safe configuration store with change notifications.
    """

    def __init__(self, initial: SessionConfig | None = None):
        self._config = initial or SessionConfig()
        self._lock = threading.RLock()
        self._listeners: list[Callable[[SessionConfig], None]] = []

    def get(self) -> SessionConfig:
        """Get the current configuration (immutable, safe to hand to a session)."""
        with self._lock:
            return self._config

    def update(self, **kwargs) -> SessionConfig:
        """
        Update configuration values.

        Args:
            **kwargs: Configuration fields to update. Unknown names are ignored.

        Returns:
            The new configuration
        """
        known = {f.name for f in fields(SessionConfig)}
        changes = {k: v for k, v in kwargs.items() if k in known}
        with self._lock:
            self._config = replace(self._config, **changes)
            current = self._config
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(current)
            except Exception:
                logger.exception("Config listener failed")
        return current

    def add_listener(self, callback: Callable[[SessionConfig], None]) -> None:
        """Add a listener for configuration changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[SessionConfig], None]) -> None:
        """Remove a configuration change listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)


# Global config store instance
_config_store: ConfigStore | None = None


def get_config_store() -> ConfigStore:
    """Get the global configuration store."""
    global _config_store
    if _config_store is None:
        _config_store = ConfigStore()
    return _config_store
