"""Secondary engine: text-only ASR (CTC/TDT models such as Parakeet).

The model handles long inputs with its own strided chunking, so the
orchestrator always hands it the whole normalized recording.
"""

import logging

import numpy as np

from whisper_gateway.constants import SAMPLE_RATE
from whisper_gateway.engine.loading import check_artifact, free_device_memory, select_device
from whisper_gateway.engine.protocol import Capabilities, DecodeOptions, DecodeOutput
from whisper_gateway.errors import EngineInitError
from whisper_gateway.models import ModelArtifact

logger = logging.getLogger(__name__)

CHUNK_LENGTH_SECONDS: float = 30.0
STRIDE_SECONDS: float = 5.0


class FluidContext:
    def __init__(self, pipe, device: str, model_name: str):
        self._pipe = pipe
        self._device = device
        self.model_name = model_name

    def decode(self, samples: np.ndarray, options: DecodeOptions) -> DecodeOutput:
        import torch

        if self._pipe is None:
            raise RuntimeError("decode on a closed context")
        if options.language or options.prompt:
            logger.debug("Language and prompt hints are ignored by %s", self.model_name)

        with torch.no_grad():
            output = self._pipe(
                {"raw": np.array(samples, dtype=np.float32), "sampling_rate": SAMPLE_RATE},
                chunk_length_s=CHUNK_LENGTH_SECONDS,
                stride_length_s=STRIDE_SECONDS,
            )
        return DecodeOutput(text=output.get("text", "").strip())

    def close(self) -> None:
        if self._pipe is None:
            return
        self._pipe = None
        free_device_memory(self._device)


class FluidEngine:
    """Text-only engine; cannot produce timestamps or incremental segments."""

    name = "fluid"
    capabilities = Capabilities(supports_timestamps=False, supports_segment_streaming=False)

    def create_context(self, artifact: ModelArtifact, use_gpu: bool = True) -> FluidContext:
        check_artifact(artifact)

        from transformers import pipeline

        device = select_device(use_gpu)
        try:
            pipe = pipeline(
                "automatic-speech-recognition",
                model=str(artifact.binary_path),
                device=device,
                model_kwargs={"local_files_only": True},
            )
        except (OSError, ValueError, RuntimeError) as e:
            raise EngineInitError(f"Failed to load ASR model {artifact.binary_path}: {e}") from e

        logger.info("ASR model %s loaded on %s", artifact.model_name, device)
        return FluidContext(pipe, device, artifact.model_name)
