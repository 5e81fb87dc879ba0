"""Helpers shared by the model-backed engines."""

import gc
import logging
import os

from whisper_gateway.errors import EngineInitError
from whisper_gateway.models import ModelArtifact

logger = logging.getLogger(__name__)


def check_artifact(artifact: ModelArtifact) -> None:
    """Fail fast when a model artifact is missing or unreadable."""
    path = artifact.binary_path
    if not path.exists():
        raise EngineInitError(f"Model file not found: {path}")
    if not os.access(path, os.R_OK):
        raise EngineInitError(f"Model file is not readable: {path}")
    if artifact.auxiliary_dir is not None and not artifact.auxiliary_dir.is_dir():
        raise EngineInitError(f"Model auxiliary directory not found: {artifact.auxiliary_dir}")


def select_device(use_gpu: bool) -> str:
    """Pick the torch device for inference."""
    import torch

    if use_gpu and torch.cuda.is_available():
        return "cuda:0"
    if use_gpu and torch.backends.mps.is_available():
        return "mps"
    return "cpu"


def free_device_memory(device: str) -> None:
    """Return cached allocator memory after a model is dropped."""
    import torch

    gc.collect()
    if device.startswith("cuda"):
        torch.cuda.empty_cache()
    elif device == "mps":
        torch.mps.empty_cache()
