"""
ASR runtime using NVIDIA NeMo models (Parakeet TDT by default).
The only module that touches torch/NeMo; everything else sees the
`InferenceRuntime` interface.
"""

import os
import tarfile

import numpy as np
import torch
import nemo.collections.asr as nemo_asr

from . import config
from .backend import ModelHandle, Token
from .errors import BackendRuntimeError, BackendUnavailable, CorruptModelError
from ..utils import get_logger

logger = get_logger(__name__)

# backend identifier -> (torch device, dtype)
_DEVICES = {
    "cuda-fp16": ("cuda", torch.float16),
    "cuda": ("cuda", torch.float32),
    "mps": ("mps", torch.float32),
    "cpu": ("cpu", torch.float32),
}


def load_model(model_name: str = config.DEFAULT_MODEL) -> ModelHandle:
    """
    Load and validate a model.

    Args:
        model_name: Pretrained model name or path to a .nemo file

    Returns:
        Handle ready to pass to a session

    Raises:
        CorruptModelError: if the model cannot be restored
    """
    logger.info("Loading ASR model: %s...", model_name)
    try:
        if os.path.isfile(model_name):
            model = nemo_asr.models.ASRModel.restore_from(model_name, map_location="cpu")
        else:
            model = nemo_asr.models.ASRModel.from_pretrained(
                model_name=model_name, map_location="cpu"
            )
    except (RuntimeError, ValueError, KeyError, OSError, EOFError, tarfile.TarError) as e:
        raise CorruptModelError(f"failed to load model {model_name}: {e}") from e

    # Optimize for inference
    model.eval()
    logger.info("ASR model %s loaded.", model_name)
    return ModelHandle(name=model_name, model=model)


# Loaded models (lazy, one per name)
_models: dict[str, ModelHandle] = {}


def get_model(model_name: str = config.DEFAULT_MODEL) -> ModelHandle:
    """Get or load a model handle."""
    if model_name not in _models:
        _models[model_name] = load_model(model_name)
    return _models[model_name]


class NemoRuntime:
    """Runs NeMo transcription on a chosen torch device."""

    def __init__(self):
        self._placement: dict[int, str] = {}

    def is_available(self, device: str) -> bool:
        if device not in _DEVICES:
            return False
        torch_device, _ = _DEVICES[device]
        if torch_device == "cuda":
            return torch.cuda.is_available()
        if torch_device == "mps":
            return torch.backends.mps.is_available()
        return True

    def _place(self, handle: ModelHandle, device: str) -> None:
        key = id(handle.model)
        if self._placement.get(key) == device:
            return
        torch_device, _ = _DEVICES[device]
        handle.model.to(torch_device)
        self._placement[key] = device
        logger.info("ASR model moved to %s", torch_device)

    def run(
        self, model: ModelHandle, pcm: np.ndarray, device: str, sample_rate: int
    ) -> list[Token]:
        if not self.is_available(device):
            raise BackendUnavailable(f"backend {device} not available")
        if sample_rate != config.SAMPLE_RATE:
            raise BackendRuntimeError(f"expected {config.SAMPLE_RATE} Hz audio, got {sample_rate}")
        if len(pcm) == 0:
            return []

        torch_device, dtype = _DEVICES[device]
        try:
            self._place(model, device)
            # Weights stay fp32; half precision only through autocast
            with torch.inference_mode(), torch.autocast(
                device_type=torch_device,
                dtype=torch.float16,
                enabled=dtype == torch.float16,
            ):
                output = model.model.transcribe(
                    [np.ascontiguousarray(pcm, dtype=np.float32)],
                    timestamps=True,
                    verbose=False,
                )
        except torch.cuda.OutOfMemoryError as e:
            raise BackendRuntimeError(f"out of memory on {device}") from e
        except RuntimeError as e:
            raise BackendRuntimeError(str(e)) from e

        return self._tokens(output)

    @staticmethod
    def _tokens(output) -> list[Token]:
        # Older NeMo returns (best_hypotheses, all_hypotheses)
        if isinstance(output, tuple):
            output = output[0]
        hyp = output[0]

        timestamp = getattr(hyp, "timestamp", None)
        words = timestamp.get("word") if isinstance(timestamp, dict) else None
        if words:
            return [
                Token(text=w["word"], start=w.get("start"), end=w.get("end"))
                for w in words
                if w.get("word")
            ]

        if hasattr(hyp, "text"):
            text = hyp.text
        elif isinstance(hyp, list):
            text = " ".join(hyp)
        else:
            text = str(hyp)
        return [Token(text=word) for word in text.split()]
