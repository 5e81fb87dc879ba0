"""Primary engine: Whisper via transformers.

This module requires torch and transformers; both are imported lazily so
the gateway can start (and be tested) without loading them.
"""

import logging

import numpy as np

from whisper_gateway.constants import SAMPLE_RATE
from whisper_gateway.engine.loading import check_artifact, free_device_memory, select_device
from whisper_gateway.engine.protocol import Capabilities, DecodeOptions, DecodeOutput
from whisper_gateway.errors import EngineInitError
from whisper_gateway.models import ModelArtifact, TranscriptionSegment

logger = logging.getLogger(__name__)

# Whisper's receptive field; longer inputs are decoded in strided windows
WHISPER_WINDOW_SECONDS: float = 30.0


class WhisperContext:
    """A Whisper model loaded into an ASR pipeline on one device."""

    def __init__(self, pipe, device: str, model_name: str):
        self._pipe = pipe
        self._device = device
        self.model_name = model_name

    def decode(self, samples: np.ndarray, options: DecodeOptions) -> DecodeOutput:
        """Transcribe samples, optionally with segment-level timestamps.

        Args:
            samples: 16kHz mono float32 audio.
            options: Language, prompt and timestamp settings.

        Returns:
            Text plus chunk-local segments when timestamps were requested.
        """
        import torch

        if self._pipe is None:
            raise RuntimeError("decode on a closed Whisper context")

        duration = len(samples) / SAMPLE_RATE
        call_kwargs = {
            "return_timestamps": options.with_timestamps,
            "generate_kwargs": self._generate_kwargs(options),
        }
        if duration > WHISPER_WINDOW_SECONDS:
            call_kwargs["chunk_length_s"] = WHISPER_WINDOW_SECONDS

        with torch.no_grad():
            output = self._pipe(
                {"raw": np.array(samples, dtype=np.float32), "sampling_rate": SAMPLE_RATE},
                **call_kwargs,
            )

        text = output.get("text", "").strip()
        segments = []
        for chunk in output.get("chunks", []) if options.with_timestamps else []:
            chunk_text = chunk.get("text", "").strip()
            if not chunk_text:
                continue
            start, end = chunk.get("timestamp", (0.0, None))
            start = min(float(start or 0.0), duration)
            end = duration if end is None else min(float(end), duration)
            segments.append(TranscriptionSegment(start, max(start, end), chunk_text))

        return DecodeOutput(text=text, segments=segments)

    @property
    def is_multilingual(self) -> bool:
        """English-only checkpoints (``*.en``) reject task and language tokens."""
        generation_config = getattr(self._pipe.model, "generation_config", None)
        return bool(getattr(generation_config, "is_multilingual", True))

    def _generate_kwargs(self, options: DecodeOptions) -> dict:
        kwargs: dict = {}
        if self.is_multilingual:
            kwargs["task"] = "transcribe"
            if options.language:
                kwargs["language"] = options.language
        elif options.language:
            logger.debug(
                "Language hint %r ignored by English-only model %s",
                options.language,
                self.model_name,
            )
        if options.prompt:
            prompt_ids = self._pipe.tokenizer.get_prompt_ids(options.prompt, return_tensors="pt")
            kwargs["prompt_ids"] = prompt_ids.to(self._device)
        if options.temperature > 0:
            kwargs["do_sample"] = True
            kwargs["temperature"] = options.temperature
        return kwargs

    def close(self) -> None:
        if self._pipe is None:
            return
        self._pipe = None
        free_device_memory(self._device)


class WhisperEngine:
    """Timestamp-capable engine backed by a local Whisper checkpoint.

    ``artifact.binary_path`` is a transformers model directory; when
    ``artifact.auxiliary_dir`` is set the processor (tokenizer and feature
    extractor) is loaded from there instead.
    """

    name = "whisper"
    capabilities = Capabilities(supports_timestamps=True, supports_segment_streaming=True)

    def create_context(self, artifact: ModelArtifact, use_gpu: bool = True) -> WhisperContext:
        check_artifact(artifact)

        import torch
        from transformers import AutoModelForSpeechSeq2Seq, AutoProcessor, pipeline

        device = select_device(use_gpu)
        dtype = torch.float32 if device == "cpu" else torch.float16
        processor_path = artifact.auxiliary_dir or artifact.binary_path

        try:
            model = AutoModelForSpeechSeq2Seq.from_pretrained(
                artifact.binary_path,
                torch_dtype=dtype,
                low_cpu_mem_usage=True,
                local_files_only=True,
            )
            processor = AutoProcessor.from_pretrained(processor_path, local_files_only=True)
            model.to(device)
            model.eval()
            pipe = pipeline(
                "automatic-speech-recognition",
                model=model,
                tokenizer=processor.tokenizer,
                feature_extractor=processor.feature_extractor,
                torch_dtype=dtype,
                device=device,
            )
        except (OSError, ValueError, RuntimeError) as e:
            raise EngineInitError(f"Failed to load Whisper model {artifact.binary_path}: {e}") from e

        logger.info("Whisper model %s loaded on %s", artifact.model_name, device)
        return WhisperContext(pipe, device, artifact.model_name)
