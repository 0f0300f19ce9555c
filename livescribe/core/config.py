"""
Core configuration constants for the streaming pipeline.
These are transport-agnostic settings.
"""

import os

# -------------------------
# AUDIO CONFIG
# -------------------------
SAMPLE_RATE = 16000
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per sample (int16)
FRAME_MS = 20  # must be 10, 20, or 30 for webrtcvad

# -------------------------
# SIGNAL CONDITIONING (live path only)
# -------------------------
DC_BLOCK_CUTOFF_HZ = 20.0
DC_BLOCK_DEFAULT_R = 0.995
MAX_INPUT_GAIN_DB = 20.0

# -------------------------
# VAD CONFIG
# -------------------------
VAD_AGGRESSIVENESS = 2  # 0..3
VAD_CONTEXT_MS = 200  # frames considered when tagging the newest one
FLEXIBLE_VOICED_PROPORTION = 0.5
STRICT_VOICED_PROPORTION = 0.8
UNCERTAIN_MARGIN = 0.1  # +/- band around the threshold reported as Uncertain
ENERGY_THRESHOLD = 0.01  # RMS of normalized float samples

# -------------------------
# WINDOW SCHEDULING
# -------------------------
CONTINUOUS_MIN_SPEECH_MS = 1000
SHORT_BUFFER_MS = 3000
LONG_BUFFER_MS = 6000
CONTINUOUS_OVERLAP_MS = 1000
BUFFERED_OVERLAP_MS = 500
SILENCE_FLUSH_MS = 2000
WINDOW_MAX_MS = 30_000  # cap a window at 30s

# -------------------------
# TRANSCRIPT STABILIZATION
# -------------------------
MAX_WORDS_PER_SECOND = 4
MIN_ALIGN_TOKENS = 4
MIN_CONFIDENT_RUN = 2
ALIGN_SLACK_S = 0.5

# -------------------------
# INFERENCE
# -------------------------
DEFAULT_MODEL = "nvidia/parakeet-tdt-0.6b-v2"
PREFERRED_BACKEND = "cuda-fp16"
FALLBACK_BACKEND = "cuda"
CPU_BACKEND = "cpu"

# -------------------------
# RECORDING
# -------------------------
RECORDINGS_DIR = os.path.expanduser("~/Documents/LiveScribe-Recordings")
RECORDING_PREFIX = "recording"
RECORDING_FLUSH_S = 1.0
RECORDING_CACHE_SIZE = 5

# -------------------------
# QUEUE SIZES
# -------------------------
CAPTURE_QUEUE_MAX = 800
FRAME_QUEUE_MAX = 800
WINDOW_QUEUE_MAX = 1
QUEUE_POLL_S = 0.05
DEVICE_STALL_S = 2.0  # no audio for this long from an inactive stream is a drop
